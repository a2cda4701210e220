"""
アプリケーション設定
データディレクトリ、ログ設定、生成APIの接続設定を管理する
"""
import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel, ConfigDict


# 設定ダイアログで選択できるモデル
SUPPORTED_MODELS: list[dict[str, str]] = [
    {"id": "gpt-4o-mini", "name": "GPT-4o mini", "description": "Fast & efficient"},
    {"id": "gpt-4o", "name": "GPT-4o", "description": "Premium quality"},
    {"id": "gpt-4.1-mini", "name": "GPT-4.1 mini", "description": "Fallback option"},
]
DEFAULT_MODEL: str = SUPPORTED_MODELS[0]["id"]


def get_app_data_dir() -> Path:
    """
    アプリケーションのデータディレクトリを取得

    Returns:
        アプリケーションデータディレクトリのパス
    """
    if sys.platform == "win32":
        app_data: str | None = os.getenv("LOCALAPPDATA")
        if app_data:
            app_dir: Path = Path(app_data) / "KidSpeakLab"
            app_dir.mkdir(exist_ok=True)
            return app_dir
    elif sys.platform == "darwin":
        app_support: Path = Path.home() / "Library" / "Application Support" / "KidSpeakLab"
        app_support.mkdir(parents=True, exist_ok=True)
        return app_support
    # その他のOSまたはフォールバック
    return Path.home() / ".kidspeak_lab"


def get_config_file() -> Path:
    """設定ファイルのパスを取得"""
    return get_app_data_dir() / "config.json"


def get_log_file() -> Path:
    """ログファイルのパスを取得"""
    return get_app_data_dir() / "app.log"


# アプリケーションデータディレクトリ
APP_DATA_DIR = get_app_data_dir()

# 設定ファイル
CONFIG_FILE = get_config_file()

# ログファイル
LOG_FILE = get_log_file()


class GenerationConfig(BaseModel):
    """
    生成APIの呼び出し設定

    各サービスの呼び出し時に渡される。呼び出し開始時点の値が使われ、
    途中で設定が変わっても実行中の呼び出しには影響しない。
    """

    model_config = ConfigDict(frozen=True)

    api_key: str = ""
    model: str = DEFAULT_MODEL  # 台本生成・採点用
    image_model: str = "gpt-image-1"
    speech_model: str = "gpt-4o-mini-tts"
    speech_voice: str = "coral"
    realtime_model: str = "gpt-4o-realtime-preview"
    transcription_model: str = "whisper-1"
    request_timeout: float = 60.0  # 秒
    connect_timeout: float = 15.0  # 秒

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())


def load_generation_config() -> GenerationConfig:
    """
    環境変数から生成設定を読み込む

    Returns:
        環境変数を反映したGenerationConfig
    """
    # OPENAI_API_KEYまたはOPENAI_APIのどちらかをサポート
    api_key: str = os.getenv("OPENAI_API_KEY") or os.getenv("OPENAI_API") or ""
    return GenerationConfig(
        api_key=api_key,
        model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
    )


def setup_logging(level: int = logging.INFO, log_file: Path | None = None) -> None:
    """
    ロギングを初期化（コンソールとログファイルに出力）

    Args:
        level: ログレベル
        log_file: ログファイルのパス（省略時はLOG_FILE）
    """
    target: Path = log_file or LOG_FILE
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(target, encoding="utf-8"))
    except OSError as e:
        print(f"ログファイルを開けませんでした: {str(e)}")

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
