"""
APIキー設定ダイアログ
"""
from typing import Callable

import flet as ft

from kidspeak.config import SUPPORTED_MODELS, GenerationConfig
from kidspeak.services.api_check_service import APICheckService


class ApiKeyDialog:
    """APIキーとモデルを設定するダイアログ"""

    def __init__(
        self,
        page: ft.Page,
        config: GenerationConfig,
        on_save: Callable[[str, str], None],
        api_check_service: APICheckService | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            page: Fletのページオブジェクト
            config: 現在の接続設定
            on_save: 保存ボタンが押されたときのコールバック（APIキー、モデルID）
            api_check_service: 接続チェックサービス
        """
        self.page = page
        self.config = config
        self.on_save = on_save
        self.api_check_service = api_check_service or APICheckService()

        self.key_field = ft.TextField(
            label="API Key",
            value=config.api_key,
            password=True,
            can_reveal_password=True,
            hint_text="sk-...",
            width=400,
        )
        self.model_group = ft.RadioGroup(
            value=config.model,
            content=ft.Column(
                [
                    ft.Radio(value=m["id"], label=f"{m['name']} - {m['description']}")
                    for m in SUPPORTED_MODELS
                ]
            ),
        )
        self.status_text = ft.Text("", size=12)
        self.dialog = ft.AlertDialog(
            modal=True,
            title=ft.Text("API Key Settings"),
            content=ft.Column(
                [
                    self.key_field,
                    ft.Text("Model", weight=ft.FontWeight.BOLD),
                    self.model_group,
                    self.status_text,
                ],
                tight=True,
            ),
            actions=[
                ft.TextButton("Check", on_click=self._on_check_clicked),
                ft.TextButton("Cancel", on_click=self._on_cancel_clicked),
                ft.ElevatedButton("Save", on_click=self._on_save_clicked),
            ],
        )

    def show(self) -> None:
        """ダイアログを表示"""
        self.page.open(self.dialog)

    def _current_config(self) -> GenerationConfig:
        return self.config.model_copy(
            update={
                "api_key": (self.key_field.value or "").strip(),
                "model": self.model_group.value or self.config.model,
            }
        )

    def _on_check_clicked(self, e: ft.ControlEvent) -> None:
        """入力されたAPIキーの接続チェック"""
        self.status_text.value = "Checking..."
        self.status_text.color = ft.Colors.BLACK
        self.page.update()

        result = self.api_check_service.check_openai_api(self._current_config())
        self.status_text.value = f"{result['status']}: {result['message']}"
        self.status_text.color = ft.Colors.GREEN if result["status"] == "利用可能" else ft.Colors.RED
        self.page.update()

    def _on_cancel_clicked(self, e: ft.ControlEvent) -> None:
        self.page.close(self.dialog)

    def _on_save_clicked(self, e: ft.ControlEvent) -> None:
        """APIキーが入力されている場合のみ保存"""
        config = self._current_config()
        if not config.has_api_key:
            self.status_text.value = "APIキーを入力してください"
            self.status_text.color = ft.Colors.RED
            self.page.update()
            return
        self.page.close(self.dialog)
        self.on_save(config.api_key, config.model)
