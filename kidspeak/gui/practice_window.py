"""
練習画面のGUIコンポーネント
セッションの状態ごとにテーマ選択・生成中・発表・練習・採点中・結果・エラーの画面を切り替える
"""
from typing import Callable

import flet as ft

from kidspeak.models.schemas import (
    FailedAction,
    PresentationData,
    ProficiencyLevel,
    SessionSnapshot,
    SessionStatus,
    Theme,
)
from kidspeak.models.themes import PREDEFINED_THEMES, ThemeSelection
from kidspeak.services.level_policy import get_level_policy
from kidspeak.services.session_service import PracticeSessionService

S = SessionStatus


class PracticeWindow:
    """練習画面のウィンドウクラス"""

    def __init__(
        self,
        page: ft.Page,
        session: PracticeSessionService,
        on_settings_callback: Callable[[], None] | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            page: Fletのページオブジェクト
            session: 練習セッション
            on_settings_callback: 設定ボタン（APIキー変更）が押されたときのコールバック
        """
        self.page = page
        self.session = session
        self.on_settings_callback = on_settings_callback

        # テーマ選択状態
        self.selection = ThemeSelection()
        self.level: ProficiencyLevel = ProficiencyLevel.STARTER

        # UIコンポーネント
        self.content_area: ft.Container | None = None
        self.theme_cards: dict[str, ft.Container] = {}
        self.custom_field: ft.TextField | None = None
        self.start_button: ft.ElevatedButton | None = None
        self.transcript_text: ft.Text | None = None
        self.rendered_status: SessionStatus | None = None

        self.session.add_listener(self._on_session_changed)

    def build(self) -> None:
        """ウィジェットの構築"""
        title = ft.Text(
            "KidSpeak Lab",
            size=28,
            weight=ft.FontWeight.BOLD,
            color=ft.Colors.INDIGO_700,
        )
        name_field = ft.TextField(
            label="Your name",
            value=self.session.child_name,
            width=180,
            dense=True,
            on_change=self._on_name_changed,
        )
        level_dropdown = ft.Dropdown(
            label="Level",
            value=self.level.value,
            width=220,
            dense=True,
            options=[
                ft.dropdown.Option(key=level.value, text=get_level_policy(level).label)
                for level in ProficiencyLevel
            ],
            on_change=self._on_level_changed,
        )
        header = ft.Row(
            [
                title,
                ft.Row(
                    [
                        name_field,
                        level_dropdown,
                        ft.IconButton(
                            icon=ft.Icons.HOME,
                            tooltip="New presentation",
                            on_click=lambda e: self.page.run_task(self.session.reset),
                        ),
                        ft.IconButton(
                            icon=ft.Icons.KEY,
                            tooltip="API key settings",
                            on_click=self._on_settings_clicked,
                        ),
                    ],
                    spacing=10,
                ),
            ],
            alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
        )

        self.content_area = ft.Container(expand=True)
        self.page.add(
            ft.Container(
                content=ft.Column(
                    [header, ft.Divider(), self.content_area],
                    spacing=10,
                    scroll=ft.ScrollMode.AUTO,
                    expand=True,
                ),
                padding=30,
                expand=True,
            )
        )
        self._render(self.session.snapshot())

    # ------------------------------------------------------------------
    # 描画
    # ------------------------------------------------------------------

    def _on_session_changed(self, snapshot: SessionSnapshot) -> None:
        """セッションの状態変化を画面に反映"""
        if self.content_area is None:
            return
        if snapshot.status is S.PRACTICING and self.rendered_status is S.PRACTICING:
            # 練習中は文字起こしだけを更新（画面全体を作り直さない）
            if self.transcript_text is not None:
                self.transcript_text.value = snapshot.transcript or "..."
                self.page.update()
            return
        self._render(snapshot)

    def _render(self, snapshot: SessionSnapshot) -> None:
        """状態に応じた画面を表示"""
        if self.content_area is None:
            return
        status = snapshot.status
        if status is S.IDLE:
            content = self._build_theme_view()
        elif status in (S.GENERATING_IMAGE, S.GENERATING_SCRIPT):
            content = self._build_generating_view(status)
        elif status in (S.READY, S.PRACTICING) and snapshot.presentation is not None:
            content = self._build_presentation_view(snapshot, snapshot.presentation)
        elif status is S.SCORING:
            content = self._build_progress_view(
                "Analyzing your speech...", "Checking your words and grammar"
            )
        elif status is S.RESULT and snapshot.result is not None:
            content = self._build_result_view(snapshot)
        else:
            content = self._build_error_view(snapshot)

        self.rendered_status = status
        self.content_area.content = content
        self.page.update()

    def _build_theme_view(self) -> ft.Control:
        """テーマ選択画面の作成"""
        self.theme_cards = {}
        cards: list[ft.Control] = []
        for theme in PREDEFINED_THEMES:
            card = ft.Container(
                content=ft.Column(
                    [
                        ft.Text(theme.icon, size=36),
                        ft.Text(theme.label, size=14, weight=ft.FontWeight.BOLD),
                        ft.Text(theme.description, size=11, color=ft.Colors.GREY_700),
                    ],
                    horizontal_alignment=ft.CrossAxisAlignment.CENTER,
                    spacing=4,
                ),
                width=160,
                height=140,
                padding=10,
                border_radius=16,
                on_click=lambda e, t=theme: self._on_theme_clicked(t),
            )
            self.theme_cards[theme.id] = card
            cards.append(card)

        self.custom_field = ft.TextField(
            label="Or type your own topic",
            hint_text="e.g. My trip to the mountains",
            value=self.selection.custom_text,
            width=500,
            on_change=self._on_custom_text_changed,
        )
        self.start_button = ft.ElevatedButton(
            "Create my presentation",
            icon=ft.Icons.AUTO_AWESOME,
            on_click=self._on_start_clicked,
            width=300,
            height=50,
        )
        self._refresh_selection()

        return ft.Column(
            [
                ft.Text("Choose a topic", size=22, weight=ft.FontWeight.BOLD),
                ft.Row(cards, wrap=True, spacing=12, run_spacing=12),
                ft.Container(height=10),
                self.custom_field,
                ft.Container(height=10),
                self.start_button,
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
        )

    def _refresh_selection(self) -> None:
        """テーマカードの強調表示と開始ボタンの有効状態を更新"""
        selected_id = self.selection.selected.id if self.selection.selected else None
        for theme_id, card in self.theme_cards.items():
            is_selected = theme_id == selected_id
            card.bgcolor = ft.Colors.INDIGO_100 if is_selected else ft.Colors.GREY_100
            card.border = ft.border.all(
                3 if is_selected else 1,
                ft.Colors.INDIGO_400 if is_selected else ft.Colors.GREY_300,
            )
        if self.start_button is not None:
            self.start_button.disabled = self.selection.theme_text is None

    def _build_progress_view(self, title: str, subtitle: str) -> ft.Control:
        return ft.Column(
            [
                ft.Container(height=60),
                ft.ProgressRing(width=64, height=64),
                ft.Text(title, size=22, weight=ft.FontWeight.BOLD),
                ft.Text(subtitle, size=14, color=ft.Colors.GREY_700),
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            spacing=16,
        )

    def _build_generating_view(self, status: SessionStatus) -> ft.Control:
        """生成中画面の作成"""
        if status is S.GENERATING_IMAGE:
            return self._build_progress_view("Drawing your picture...", "Step 1 of 2")
        return self._build_progress_view("Writing your script...", "Step 2 of 2")

    def _build_presentation_view(
        self, snapshot: SessionSnapshot, presentation: PresentationData
    ) -> ft.Control:
        """発表画面（お手本再生・練習）の作成"""
        image = ft.Image(
            src_base64=presentation.illustration.data,
            width=520,
            fit=ft.ImageFit.CONTAIN,
            border_radius=16,
        )

        script_lines: list[ft.Control] = [
            ft.Text(presentation.intro, size=18, weight=ft.FontWeight.BOLD),
        ]
        for point in presentation.points:
            script_lines.append(ft.Text(f"⭐ {point}", size=18))
        script_lines.append(ft.Text(presentation.conclusion, size=18, italic=True))

        script_card = ft.Container(
            content=ft.Column(script_lines, spacing=8),
            padding=20,
            bgcolor=ft.Colors.AMBER_50,
            border_radius=16,
            width=520,
        )

        if snapshot.status is S.PRACTICING:
            self.transcript_text = ft.Text(snapshot.transcript or "...", size=16)
            controls = ft.Column(
                [
                    ft.Row(
                        [
                            ft.Icon(ft.Icons.MIC, color=ft.Colors.RED),
                            ft.Text("Listening... Say your presentation!", size=16),
                        ]
                    ),
                    ft.Container(
                        content=self.transcript_text,
                        padding=15,
                        bgcolor=ft.Colors.GREY_100,
                        border_radius=12,
                        width=520,
                    ),
                    ft.ElevatedButton(
                        "I'm finished",
                        icon=ft.Icons.STOP,
                        on_click=lambda e: self.page.run_task(self.session.stop_practice),
                        bgcolor=ft.Colors.RED_400,
                        color=ft.Colors.WHITE,
                        width=250,
                        height=50,
                    ),
                ],
                horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            )
        else:
            self.transcript_text = None
            if snapshot.is_playing:
                listen_button = ft.ElevatedButton(
                    "Stop",
                    icon=ft.Icons.STOP,
                    on_click=lambda e: self.session.stop_audio(),
                    width=200,
                    height=50,
                )
            else:
                listen_button = ft.ElevatedButton(
                    "Listen",
                    icon=ft.Icons.VOLUME_UP,
                    on_click=lambda e: self.page.run_task(self.session.play_example),
                    width=200,
                    height=50,
                )
            control_items: list[ft.Control] = [
                ft.Row(
                    [
                        listen_button,
                        ft.ElevatedButton(
                            "Start practice",
                            icon=ft.Icons.MIC,
                            on_click=lambda e: self.page.run_task(self.session.start_practice),
                            bgcolor=ft.Colors.GREEN_400,
                            color=ft.Colors.WHITE,
                            width=200,
                            height=50,
                        ),
                    ],
                    alignment=ft.MainAxisAlignment.CENTER,
                )
            ]
            if snapshot.error is not None and snapshot.error.action is FailedAction.PLAYBACK:
                control_items.append(
                    ft.Text(snapshot.error.message, size=12, color=ft.Colors.RED)
                )
            controls = ft.Column(control_items, horizontal_alignment=ft.CrossAxisAlignment.CENTER)

        return ft.Column(
            [
                ft.Row(
                    [image, script_card],
                    wrap=True,
                    spacing=20,
                    alignment=ft.MainAxisAlignment.CENTER,
                    vertical_alignment=ft.CrossAxisAlignment.START,
                ),
                ft.Container(height=10),
                controls,
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
        )

    def _build_result_view(self, snapshot: SessionSnapshot) -> ft.Control:
        """結果画面の作成"""
        result = snapshot.result
        stars = round(result.score / 20)
        score_color = (
            ft.Colors.GREEN
            if result.score >= 80
            else ft.Colors.ORANGE if result.score >= 50 else ft.Colors.RED
        )

        mistakes: list[ft.Control]
        if result.mistakes:
            mistakes = [ft.Text(f"• {m}", size=14) for m in result.mistakes]
        else:
            mistakes = [ft.Text("No mistakes. Perfect!", size=14, color=ft.Colors.GREEN)]

        return ft.Column(
            [
                ft.Text(
                    f"Well done, {self.session.child_name}!",
                    size=26,
                    weight=ft.FontWeight.BOLD,
                ),
                ft.Text("⭐" * stars + "☆" * (5 - stars), size=32),
                ft.Text(f"{result.score:.0f} / 100", size=36, weight=ft.FontWeight.BOLD, color=score_color),
                ft.Text(f"CEFR level: {result.cefr_level}", size=16),
                ft.Container(
                    content=ft.Text(result.feedback, size=16),
                    padding=15,
                    bgcolor=ft.Colors.BLUE_50,
                    border_radius=12,
                    width=600,
                ),
                ft.Container(
                    content=ft.Column(
                        [ft.Text("Things to practice", size=16, weight=ft.FontWeight.BOLD)] + mistakes
                    ),
                    padding=15,
                    bgcolor=ft.Colors.ORANGE_50,
                    border_radius=12,
                    width=600,
                ),
                ft.Container(
                    content=ft.Column(
                        [
                            ft.Text("What you said", size=16, weight=ft.FontWeight.BOLD),
                            ft.Text(result.transcript, size=14, italic=True),
                        ]
                    ),
                    padding=15,
                    bgcolor=ft.Colors.GREY_100,
                    border_radius=12,
                    width=600,
                ),
                ft.Row(
                    [
                        ft.ElevatedButton(
                            "Try again",
                            icon=ft.Icons.REFRESH,
                            on_click=lambda e: self.page.run_task(self.session.retry),
                            width=220,
                            height=50,
                        ),
                        ft.ElevatedButton(
                            "New presentation",
                            icon=ft.Icons.HOME,
                            on_click=lambda e: self.page.run_task(self.session.reset),
                            width=220,
                            height=50,
                        ),
                    ],
                    alignment=ft.MainAxisAlignment.CENTER,
                ),
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            spacing=14,
        )

    def _build_error_view(self, snapshot: SessionSnapshot) -> ft.Control:
        """エラー画面の作成"""
        message = snapshot.error.message if snapshot.error else "Something went wrong."
        return ft.Column(
            [
                ft.Container(height=40),
                ft.Icon(ft.Icons.ERROR_OUTLINE, size=64, color=ft.Colors.RED_400),
                ft.Text("Oops!", size=26, weight=ft.FontWeight.BOLD),
                ft.Text(message, size=14, color=ft.Colors.GREY_800, text_align=ft.TextAlign.CENTER),
                ft.Row(
                    [
                        ft.ElevatedButton(
                            "Retry",
                            icon=ft.Icons.REFRESH,
                            on_click=lambda e: self.page.run_task(self.session.retry),
                            width=200,
                            height=50,
                        ),
                        ft.ElevatedButton(
                            "Change API key",
                            icon=ft.Icons.KEY,
                            on_click=self._on_settings_clicked,
                            width=200,
                            height=50,
                        ),
                        ft.TextButton(
                            "Start over",
                            on_click=lambda e: self.page.run_task(self.session.reset),
                        ),
                    ],
                    alignment=ft.MainAxisAlignment.CENTER,
                ),
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            spacing=14,
        )

    # ------------------------------------------------------------------
    # イベントハンドラ
    # ------------------------------------------------------------------

    def _on_theme_clicked(self, theme: Theme) -> None:
        """テーマカードがクリックされたときの処理"""
        self.selection.select_theme(theme)
        if self.custom_field is not None:
            self.custom_field.value = ""
        self._refresh_selection()
        self.page.update()

    def _on_custom_text_changed(self, e: ft.ControlEvent) -> None:
        self.selection.set_custom_text(e.control.value or "")
        self._refresh_selection()
        self.page.update()

    def _on_name_changed(self, e: ft.ControlEvent) -> None:
        name = (e.control.value or "").strip()
        if name:
            self.session.child_name = name

    def _on_level_changed(self, e: ft.ControlEvent) -> None:
        self.level = ProficiencyLevel(e.control.value)

    def _on_start_clicked(self, e: ft.ControlEvent) -> None:
        """開始ボタンがクリックされたときの処理"""
        theme_text = self.selection.theme_text
        if theme_text is None:
            return
        self.page.run_task(self.session.start, theme_text, self.level)

    def _on_settings_clicked(self, e: ft.ControlEvent) -> None:
        if self.on_settings_callback:
            self.on_settings_callback()
