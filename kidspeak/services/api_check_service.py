"""
API接続チェックサービス
設定画面で入力されたAPIキーが使えるかを確認する
"""
from typing import Dict

from openai import OpenAI, OpenAIError

from kidspeak.config import GenerationConfig


class APICheckService:
    """API接続状態をチェックするサービスクラス"""

    def check_openai_api(self, config: GenerationConfig) -> Dict[str, str]:
        """
        OpenAI APIの接続状態をチェック

        Args:
            config: チェックする接続設定

        Returns:
            API名と状態を含む辞書
        """
        if not config.has_api_key:
            return {
                "name": "OpenAI API",
                "status": "不明",
                "message": "APIキーが設定されていません"
            }

        try:
            client = OpenAI(api_key=config.api_key, timeout=config.connect_timeout, max_retries=0)
            # 使用するモデルを取得して接続とモデルの利用可否を確認
            client.models.retrieve(config.model)
        except OpenAIError as e:
            return {
                "name": "OpenAI API",
                "status": "エラー",
                "message": f"API接続エラー: {str(e)}"
            }
        return {
            "name": "OpenAI API",
            "status": "利用可能",
            "message": "APIキーが有効です"
        }
