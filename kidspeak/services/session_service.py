"""
練習セッションサービス
イラスト生成 → 台本生成 → お手本再生 / 練習（録音・文字起こし）→ 採点 の流れを状態遷移で管理する
"""

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, List

from kidspeak.config import GenerationConfig
from kidspeak.models.schemas import (
    ErrorRecord,
    FailedAction,
    MediaChunk,
    PracticeResult,
    PresentationData,
    ProficiencyLevel,
    SessionSnapshot,
    SessionStatus,
)
from kidspeak.services.errors import (
    ChannelError,
    InvalidTransitionError,
    KidSpeakError,
    ThemeValidationError,
)
from kidspeak.services.evaluation_service import EvaluationService
from kidspeak.services.openai_service import OpenAIService
from kidspeak.services.realtime_service import UPLOAD_SAMPLE_RATE, RealtimeTranscriptionChannel

if TYPE_CHECKING:
    from kidspeak.services.audio_service import AudioService

logger = logging.getLogger(__name__)

S = SessionStatus

# 許可された状態遷移（リセットによるIDLEへの遷移を含む）
TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    S.IDLE: frozenset({S.GENERATING_IMAGE}),
    S.GENERATING_IMAGE: frozenset({S.GENERATING_SCRIPT, S.ERROR, S.IDLE}),
    S.GENERATING_SCRIPT: frozenset({S.READY, S.ERROR, S.IDLE}),
    S.READY: frozenset({S.PRACTICING, S.IDLE}),
    S.PRACTICING: frozenset({S.READY, S.SCORING, S.ERROR, S.IDLE}),
    S.SCORING: frozenset({S.RESULT, S.ERROR, S.IDLE}),
    S.RESULT: frozenset({S.READY, S.IDLE}),
    S.ERROR: frozenset({S.IDLE, S.READY, S.SCORING}),
}

SessionListener = Callable[[SessionSnapshot], None]


class PracticeSessionService:
    """
    練習セッションの状態機械

    画面からの操作（start, start_practice, stop_practice, retry, reset, change_credential）
    を受け付け、状態と発表データ・文字起こし・練習結果を更新する。
    エラーはすべてERROR状態とErrorRecordに変換され、呼び出し元には送出されない。
    """

    def __init__(
        self,
        config: GenerationConfig,
        openai_service: OpenAIService | None = None,
        evaluation_service: EvaluationService | None = None,
        audio_service: "AudioService | None" = None,
        channel_factory: Callable[[], RealtimeTranscriptionChannel] | None = None,
        child_name: str = "Anna",
    ) -> None:
        """
        初期化処理

        Args:
            config: 生成APIの接続設定
            openai_service: 生成サービス
            evaluation_service: 採点サービス
            audio_service: 音声入出力サービス
            channel_factory: 練習ごとに文字起こしチャンネルを作る関数
            child_name: 自己紹介に差し込む子どもの名前
        """
        self._config: GenerationConfig = config
        self.openai_service: OpenAIService = openai_service or OpenAIService()
        self.evaluation_service: EvaluationService = (
            evaluation_service or EvaluationService(self.openai_service)
        )
        if audio_service is None:
            from kidspeak.services.audio_service import AudioService

            audio_service = AudioService(upload_rate=UPLOAD_SAMPLE_RATE)
        self.audio_service: "AudioService" = audio_service
        self.channel_factory: Callable[[], RealtimeTranscriptionChannel] = (
            channel_factory or RealtimeTranscriptionChannel
        )
        self.child_name: str = child_name

        self._status: SessionStatus = S.IDLE
        self._presentation: PresentationData | None = None
        self._fragments: List[str] = []
        self._result: PracticeResult | None = None
        self._error: ErrorRecord | None = None

        # 再試行用の入力
        self._theme_text: str | None = None
        self._level: ProficiencyLevel = ProficiencyLevel.STARTER
        self._scoring_transcript: str = ""

        # 練習中のリソース
        self._channel: RealtimeTranscriptionChannel | None = None
        self._pump_task: asyncio.Task | None = None
        self._stopping: bool = False

        # お手本音声
        self._speech_audio: bytes | None = None
        self._speech_pending: bool = False

        # リセットのたびに増える世代番号（古い処理の結果を捨てるため）
        self._epoch: int = 0
        self._primary_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._listeners: List[SessionListener] = []

    # ------------------------------------------------------------------
    # 読み取り用
    # ------------------------------------------------------------------

    @property
    def config(self) -> GenerationConfig:
        return self._config

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def presentation(self) -> PresentationData | None:
        return self._presentation

    @property
    def fragments(self) -> tuple[str, ...]:
        return tuple(self._fragments)

    @property
    def transcript(self) -> str:
        return " ".join(self._fragments).strip()

    @property
    def result(self) -> PracticeResult | None:
        return self._result

    @property
    def error(self) -> ErrorRecord | None:
        return self._error

    @property
    def is_playing(self) -> bool:
        return self._speech_pending or self.audio_service.is_playing

    def snapshot(self) -> SessionSnapshot:
        """画面表示用の状態を取得"""
        return SessionSnapshot(
            status=self._status,
            presentation=self._presentation,
            fragments=list(self._fragments),
            transcript=self.transcript,
            result=self._result,
            error=self._error,
            is_playing=self.is_playing,
            theme_text=self._theme_text,
            level=self._level,
        )

    def add_listener(self, listener: SessionListener) -> None:
        """状態が変わるたびに呼ばれるリスナーを登録"""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # 発表の生成
    # ------------------------------------------------------------------

    async def start(self, theme_text: str | None, level: ProficiencyLevel) -> bool:
        """
        イラストと台本の生成を開始

        Args:
            theme_text: テーマ（カタログのラベルまたは自由入力）
            level: 英語レベル

        Returns:
            生成を開始した場合True（テーマが空、またはIDLE以外の場合は何もしない）
        """
        if self._status is not S.IDLE:
            logger.warning("生成を開始できません (status=%s)", self._status.value)
            return False
        text = (theme_text or "").strip()
        if not text:
            logger.info("%s", ThemeValidationError("テーマが指定されていません"))
            return False

        self._theme_text = text
        self._level = ProficiencyLevel(level)
        self._error = None
        await self._generate()
        return True

    async def _generate(self) -> None:
        """イラスト → 台本を順に生成してREADYへ"""
        epoch = self._epoch
        theme_text = self._theme_text or ""
        level = self._level
        self._primary_task = asyncio.current_task()
        try:
            self._transition(S.GENERATING_IMAGE)
            illustration = await self.openai_service.generate_illustration(theme_text, self.config)
            if epoch != self._epoch:
                return

            self._transition(S.GENERATING_SCRIPT)
            content = await self.openai_service.generate_script(
                illustration, theme_text, level, self.config
            )
            if epoch != self._epoch:
                return
        except KidSpeakError as e:
            if epoch == self._epoch:
                self._fail(e, FailedAction.GENERATE)
            return
        finally:
            if epoch == self._epoch:
                self._primary_task = None

        self._presentation = PresentationData.from_script(illustration, content, self.child_name)
        self._speech_audio = None
        self._transition(S.READY)

    # ------------------------------------------------------------------
    # お手本の再生
    # ------------------------------------------------------------------

    async def play_example(self) -> bool:
        """
        台本の読み上げ音声を再生（READYのときのみ）

        Returns:
            再生を開始した場合True（再生中・合成中の場合は何もしない）
        """
        if self._status is not S.READY or self.is_playing or self._presentation is None:
            return False

        presentation = self._presentation
        self._speech_pending = True
        self._notify()
        try:
            if self._speech_audio is None:
                audio = await self.openai_service.synthesize_speech(presentation.script, self.config)
                if presentation is not self._presentation:
                    return False
                self._speech_audio = audio
            if self._status is not S.READY:
                return False

            loop = asyncio.get_running_loop()
            return self.audio_service.play_speech(
                self._speech_audio,
                on_finished=lambda: loop.call_soon_threadsafe(self._notify),
            )
        except KidSpeakError as e:
            logger.warning("お手本の再生に失敗しました: %s", str(e))
            self._error = ErrorRecord(
                kind=type(e).__name__, message=str(e), action=FailedAction.PLAYBACK
            )
            return False
        finally:
            self._speech_pending = False
            self._notify()

    def stop_audio(self) -> None:
        """お手本の再生を停止（何度呼んでもよい）"""
        was_playing = self.audio_service.is_playing
        self.audio_service.stop_speech()
        if was_playing:
            self._notify()

    # ------------------------------------------------------------------
    # 練習（録音 + 文字起こし）と採点
    # ------------------------------------------------------------------

    async def start_practice(self) -> bool:
        """
        練習を開始（文字起こしの接続とマイク録音を同時に開始）

        Returns:
            練習を開始できた場合True
        """
        if self._status is not S.READY:
            logger.warning("練習を開始できません (status=%s)", self._status.value)
            return False

        self.stop_audio()
        self._fragments = []
        self._error = None
        epoch = self._epoch
        self._transition(S.PRACTICING)

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[MediaChunk] = asyncio.Queue()
        channel = self.channel_factory()
        self._channel = channel

        def on_chunk(chunk: MediaChunk) -> None:
            # 録音スレッドから呼ばれる。キューに入れた順に送信される
            loop.call_soon_threadsafe(queue.put_nowait, chunk)

        def on_error(message: str) -> None:
            self._schedule(self._handle_channel_drop(channel, message))

        results = await asyncio.gather(
            channel.open(self._on_fragment, on_error, self.config),
            asyncio.to_thread(self.audio_service.start_capture, on_chunk),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]

        if epoch != self._epoch or self._channel is not channel:
            # 接続中にリセットされた
            await self._release(channel, None)
            return False

        if failures:
            await self._release_practice_resources()
            error = failures[0]
            if not isinstance(error, KidSpeakError):
                logger.error("練習の開始中に予期しないエラー", exc_info=error)
                error = ChannelError(str(error))
            self._fail(error, FailedAction.PRACTICE)
            return False

        self._pump_task = asyncio.create_task(self._pump_frames(channel, queue))
        return True

    async def stop_practice(self) -> bool:
        """
        練習を終了

        録音と接続を先に閉じ、文字起こしが空ならREADYへ戻る。
        空でなければ採点してRESULTへ進む。

        Returns:
            練習を終了した場合True
        """
        if self._status is not S.PRACTICING or self._stopping:
            return False

        # 解放を待つ間に重ねて呼ばれても一度だけ終了処理をする
        epoch = self._epoch
        self._stopping = True
        try:
            await self._release_practice_resources()
        finally:
            self._stopping = False
        if epoch != self._epoch or self._status is not S.PRACTICING:
            return False

        transcript = self.transcript
        if not transcript:
            logger.info("発話が検出されなかったため採点をスキップします")
            self._transition(S.READY)
            return True

        self._scoring_transcript = transcript
        await self._score(transcript)
        return True

    async def _score(self, transcript: str) -> None:
        """採点してRESULTへ"""
        epoch = self._epoch
        presentation = self._presentation
        if presentation is None:
            raise InvalidTransitionError("発表データがない状態で採点はできません")

        self._primary_task = asyncio.current_task()
        try:
            self._transition(S.SCORING)
            result = await self.evaluation_service.score(presentation.script, transcript, self.config)
        except KidSpeakError as e:
            if epoch == self._epoch:
                self._fail(e, FailedAction.SCORING)
            return
        finally:
            if epoch == self._epoch:
                self._primary_task = None

        if epoch != self._epoch:
            return
        self._result = result
        self._transition(S.RESULT)

    def _on_fragment(self, text: str) -> None:
        """文字起こし断片を受信順に追加"""
        if self._status is not S.PRACTICING:
            return
        self._fragments.append(text)
        self._notify()

    async def _pump_frames(
        self, channel: RealtimeTranscriptionChannel, queue: "asyncio.Queue[MediaChunk]"
    ) -> None:
        """録音したチャンクを順番に送信し続ける"""
        while True:
            chunk = await queue.get()
            try:
                await channel.send(chunk)
            except ChannelError as e:
                self._schedule(self._handle_channel_drop(channel, str(e)))
                return

    async def _handle_channel_drop(
        self, channel: RealtimeTranscriptionChannel, message: str
    ) -> None:
        """練習中に接続が切れた場合はリソースを解放してERRORへ"""
        if self._status is not S.PRACTICING or self._channel is not channel:
            return
        await self._release_practice_resources()
        self._fail(ChannelError(message), FailedAction.PRACTICE)

    async def _release_practice_resources(self) -> None:
        """送信タスク、マイク、文字起こし接続を解放"""
        channel = self._channel
        pump = self._pump_task
        self._channel = None
        self._pump_task = None
        await self._release(channel, pump)

    async def _release(
        self, channel: RealtimeTranscriptionChannel | None, pump: asyncio.Task | None
    ) -> None:
        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        try:
            self.audio_service.stop_capture()
        finally:
            if channel is not None:
                await channel.close()

    # ------------------------------------------------------------------
    # 再試行・リセット・設定変更
    # ------------------------------------------------------------------

    async def retry(self) -> bool:
        """
        再試行

        RESULTでは同じ台本で練習をやり直す（READYへ）。
        ERRORでは失敗した操作を同じ入力でもう一度実行する。

        Returns:
            再試行した場合True
        """
        if self._status is S.RESULT:
            self._result = None
            self._transition(S.READY)
            return True

        if self._status is not S.ERROR or self._error is None:
            return False

        action = self._error.action
        self._error = None
        logger.info("再試行: %s", action.value)

        if action is FailedAction.GENERATE:
            self._presentation = None
            self._transition(S.IDLE)
            await self._generate()
            return True
        if action is FailedAction.PRACTICE and self._presentation is not None:
            self._transition(S.READY)
            return await self.start_practice()
        if action is FailedAction.SCORING and self._presentation is not None:
            await self._score(self._scoring_transcript)
            return True

        # 再試行できない場合は最初からやり直す
        await self.reset()
        return False

    async def reset(self) -> None:
        """どの状態からでもIDLEへ戻す（マイク・スピーカーを先に解放）"""
        self._epoch += 1
        primary = self._primary_task
        self._primary_task = None
        if primary is not None and primary is not asyncio.current_task() and not primary.done():
            primary.cancel()

        self.audio_service.stop_speech()
        await self._release_practice_resources()

        self._presentation = None
        self._result = None
        self._fragments = []
        self._error = None
        self._speech_audio = None
        self._scoring_transcript = ""

        if self._status is S.IDLE:
            self._notify()
        else:
            self._transition(S.IDLE)

    async def change_credential(self, api_key: str, model: str | None = None) -> None:
        """
        APIキーとモデルを変更（次の呼び出しから有効）

        Args:
            api_key: 新しいAPIキー
            model: 台本生成・採点に使うモデルID
        """
        updates: Dict[str, str] = {"api_key": api_key.strip()}
        if model:
            updates["model"] = model
        self._config = self._config.model_copy(update=updates)
        logger.info("接続設定を更新しました (model=%s)", self._config.model)

        if self._status is S.ERROR:
            await self.reset()
        else:
            self._notify()

    # ------------------------------------------------------------------
    # 内部処理
    # ------------------------------------------------------------------

    def _transition(self, target: SessionStatus) -> None:
        """
        状態を遷移させてリスナーに通知

        Raises:
            InvalidTransitionError: 許可されていない遷移の場合
        """
        if target not in TRANSITIONS[self._status]:
            raise InvalidTransitionError(f"{self._status.value} -> {target.value}")
        logger.info("状態遷移: %s -> %s", self._status.value, target.value)
        self._status = target
        self._notify()

    def _fail(self, error: Exception, action: FailedAction) -> None:
        """エラーを記録してERRORへ"""
        logger.error("%s に失敗しました: %s", action.value, str(error))
        self._error = ErrorRecord(kind=type(error).__name__, message=str(error), action=action)
        self._transition(S.ERROR)

    def _schedule(self, coro) -> None:
        """バックグラウンドで実行（参照を保持してGCを防ぐ）"""
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
