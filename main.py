"""
KidSpeak Lab - メインエントリーポイント
子ども向け英語スピーチ練習アプリ
"""
import logging
import sys
from pathlib import Path

import flet as ft
from dotenv import load_dotenv

from kidspeak.config import APP_DATA_DIR, load_generation_config, setup_logging
from kidspeak.gui.api_key_dialog import ApiKeyDialog
from kidspeak.gui.practice_window import PracticeWindow
from kidspeak.services.session_service import PracticeSessionService
from kidspeak.services.storage_service import LocalStorageService

# .envファイルの読み込み（実行ファイルのディレクトリまたはカレントディレクトリから）
if getattr(sys, "frozen", False):
    # PyInstallerでビルドされた場合
    application_path = Path(sys.executable).parent
else:
    application_path = Path(__file__).parent

env_path = application_path / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()

logger = logging.getLogger(__name__)


class App:
    """アプリケーションのメインクラス"""

    def __init__(self, page: ft.Page) -> None:
        """
        初期化処理

        Args:
            page: Fletのページオブジェクト
        """
        self.page = page
        self.page.title = "KidSpeak Lab"
        self.page.window.min_width = 1000
        self.page.window.min_height = 720
        self.page.theme_mode = ft.ThemeMode.LIGHT
        self.page.bgcolor = ft.Colors.WHITE

        # アプリケーションデータディレクトリの作成
        APP_DATA_DIR.mkdir(parents=True, exist_ok=True)

        self.storage_service = LocalStorageService()
        config = self.storage_service.apply_saved_credentials(load_generation_config())
        self.session = PracticeSessionService(config)
        self.page.on_disconnect = self._on_disconnect

        self.show_practice()
        if not config.has_api_key:
            self.show_api_key_dialog()

    def show_practice(self) -> None:
        """練習画面を表示"""
        self.page.clean()
        practice_window = PracticeWindow(
            self.page,
            self.session,
            on_settings_callback=self.show_api_key_dialog,
        )
        practice_window.build()

    def show_api_key_dialog(self) -> None:
        """APIキー設定ダイアログを表示"""
        dialog = ApiKeyDialog(self.page, self.session.config, on_save=self._on_credentials_saved)
        dialog.show()

    def _on_credentials_saved(self, api_key: str, model: str) -> None:
        """APIキーを保存してセッションに反映"""
        if not self.storage_service.save_credentials(api_key, model):
            logger.warning("APIキーを保存できませんでした（今回の起動中のみ有効）")
        self.page.run_task(self.session.change_credential, api_key, model)

    def _on_disconnect(self, e: ft.ControlEvent) -> None:
        """ウィンドウが閉じられたらマイク・スピーカーを解放"""
        self.page.run_task(self.session.reset)


def main(page: ft.Page) -> None:
    """アプリケーションの起動"""
    App(page)


if __name__ == "__main__":
    setup_logging()
    ft.app(target=main, view=ft.AppView.FLET_APP)
