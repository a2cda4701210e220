"""
ローカルストレージサービス
APIキーとモデルの選択をローカルの設定ファイルに保存する
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict

from kidspeak.config import CONFIG_FILE, GenerationConfig

logger = logging.getLogger(__name__)


class LocalStorageService:
    """設定ファイルに接続設定を保存・読み込むサービスクラス"""

    def __init__(self, config_file: Path | None = None) -> None:
        """
        初期化処理

        Args:
            config_file: 設定ファイルのパス（省略時はCONFIG_FILE）
        """
        self.config_file: Path = config_file or CONFIG_FILE

    def load_settings(self) -> Dict[str, Any]:
        """
        保存済みの設定を読み込む

        Returns:
            設定の辞書（ファイルがない、または壊れている場合は空の辞書）
        """
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("設定ファイルの読み込みに失敗しました: %s", str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def save_credentials(self, api_key: str, model: str) -> bool:
        """
        APIキーとモデルを保存

        Args:
            api_key: APIキー
            model: 台本生成・採点に使うモデルID

        Returns:
            保存成功時True、失敗時False
        """
        data = self.load_settings()
        data["api_key"] = api_key
        data["model"] = model
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.error("設定の保存に失敗しました: %s", str(e))
            return False
        return True

    def apply_saved_credentials(self, config: GenerationConfig) -> GenerationConfig:
        """
        保存済みのAPIキーとモデルを設定に反映

        Args:
            config: 環境変数から読み込んだ設定

        Returns:
            保存済みの値で上書きした設定
        """
        saved = self.load_settings()
        updates: Dict[str, Any] = {}
        if saved.get("api_key"):
            updates["api_key"] = saved["api_key"]
        if saved.get("model"):
            updates["model"] = saved["model"]
        return config.model_copy(update=updates) if updates else config
