"""
OpenAI Realtime APIサービス
練習中の子どもの発話をリアルタイムで文字起こしする
"""

import asyncio
import contextlib
import logging
from typing import Any, Callable, Dict, List

from openai import AsyncOpenAI

from kidspeak.config import GenerationConfig
from kidspeak.models.schemas import MediaChunk
from kidspeak.services.errors import ChannelError

logger = logging.getLogger(__name__)

# Realtime APIに送る音声のサンプリングレート（pcm16は24kHz）
UPLOAD_SAMPLE_RATE: int = 24000

TRANSCRIBE_INSTRUCTIONS: str = (
    "You are listening to a child practice English. Just transcribe accurately what they say."
)


class TranscriptSequencer:
    """
    文字起こし結果を発話の確定順に並べ替える

    Realtime APIは発話ごとの文字起こし完了イベントを確定順に返すとは限らないため、
    input_audio_buffer.committedの順序を記録し、先行する発話の結果が揃うまで待つ。
    同じitem_idの結果は一度だけ出力する。
    """

    def __init__(self) -> None:
        self._order: List[str] = []
        self._pending: Dict[str, str] = {}
        self._delivered: set[str] = set()

    def committed(self, item_id: str) -> None:
        """発話の確定を記録"""
        if item_id in self._delivered or item_id in self._order:
            return
        self._order.append(item_id)

    def completed(self, item_id: str, text: str) -> List[str]:
        """
        文字起こし完了を記録

        Args:
            item_id: 会話アイテムID
            text: 文字起こしテキスト（失敗時は空文字）

        Returns:
            出力可能になった断片のリスト（確定順、空文字は除く）
        """
        if item_id in self._delivered or item_id in self._pending:
            return []
        if item_id not in self._order:
            self._order.append(item_id)
        self._pending[item_id] = text

        ready: List[str] = []
        while self._order and self._order[0] in self._pending:
            head = self._order.pop(0)
            self._delivered.add(head)
            fragment = self._pending.pop(head).strip()
            if fragment:
                ready.append(fragment)
        return ready


class RealtimeTranscriptionChannel:
    """Realtime APIとの双方向ストリーム（1回の練習につき1つ）"""

    def __init__(self) -> None:
        self.client: AsyncOpenAI | None = None
        self.connection_manager: Any | None = None  # __aexit__を呼ぶために保存
        self.connection: Any | None = None
        self.receive_task: asyncio.Task | None = None
        self.sequencer: TranscriptSequencer = TranscriptSequencer()
        self.closing: bool = False

        # コールバック関数
        self.on_fragment: Callable[[str], None] | None = None
        self.on_error: Callable[[str], None] | None = None

    @property
    def is_open(self) -> bool:
        return self.connection is not None and not self.closing

    async def open(
        self,
        on_fragment: Callable[[str], None],
        on_error: Callable[[str], None],
        config: GenerationConfig,
    ) -> None:
        """
        ストリームを開始

        Args:
            on_fragment: 文字起こし断片を受信したときのコールバック
            on_error: 接続エラー時のコールバック
            config: 生成設定

        Raises:
            ChannelError: 接続できなかった場合
        """
        if self.connection is not None:
            raise ChannelError("文字起こしの接続は既に開いています")
        if not config.has_api_key:
            raise ChannelError("APIキーが設定されていません")

        self.on_fragment = on_fragment
        self.on_error = on_error
        self.closing = False
        self.sequencer = TranscriptSequencer()

        try:
            self.client = AsyncOpenAI(api_key=config.api_key, max_retries=0)
            manager = self.client.beta.realtime.connect(model=config.realtime_model)
            connection = await asyncio.wait_for(
                manager.__aenter__(), timeout=config.connect_timeout
            )
            if self.closing:
                # 接続待ちの間にclose()された
                await manager.__aexit__(None, None, None)
                raise ChannelError("接続中に文字起こしが中断されました")
            self.connection_manager = manager
            self.connection = connection

            # 応答は生成せず、入力音声の文字起こしだけを行う
            await self.connection.session.update(
                session={
                    "modalities": ["text"],
                    "instructions": TRANSCRIBE_INSTRUCTIONS,
                    "input_audio_format": "pcm16",
                    "input_audio_transcription": {
                        "model": config.transcription_model,
                        "language": "en",
                    },
                    "turn_detection": {
                        "type": "server_vad",
                        "threshold": 0.5,
                        "prefix_padding_ms": 300,
                        "silence_duration_ms": 800,
                        "create_response": False,
                    },
                }
            )
        except asyncio.TimeoutError as e:
            await self.close()
            raise ChannelError("文字起こしサーバーへの接続がタイムアウトしました") from e
        except ChannelError:
            await self.close()
            raise
        except Exception as e:
            await self.close()
            raise ChannelError(f"Realtime API接続エラー: {str(e)}") from e

        self.receive_task = asyncio.create_task(self._receive_loop(self.connection))
        logger.info("文字起こしストリームを開始しました (model=%s)", config.realtime_model)

    async def send(self, chunk: MediaChunk) -> None:
        """
        音声チャンクを送信

        Args:
            chunk: base64エンコードされたPCM16音声

        Raises:
            ChannelError: 接続が開いていない、または送信に失敗した場合
        """
        if not self.is_open:
            raise ChannelError("文字起こしの接続が開いていません")
        try:
            await self.connection.input_audio_buffer.append(audio=chunk.data)
        except Exception as e:
            raise ChannelError(f"音声データ送信エラー: {str(e)}") from e

    async def close(self) -> None:
        """ストリームを終了（何度呼んでもよい）"""
        self.closing = True

        task = self.receive_task
        self.receive_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        manager = self.connection_manager
        client = self.client
        self.connection_manager = None
        self.connection = None
        self.client = None

        if manager is not None:
            try:
                await manager.__aexit__(None, None, None)
            except Exception as e:
                logger.warning("Realtime API切断エラー: %s", str(e))
        if client is not None:
            await client.close()
        logger.debug("文字起こしストリームを終了しました")

    async def _receive_loop(self, connection: Any) -> None:
        """受信イベントを処理し続ける"""
        try:
            async for event in connection:
                self._handle_event(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report_error(f"Realtime APIイベントループエラー: {str(e)}")
            return

        # サーバー側から切断された
        self._report_error("文字起こしの接続が切断されました")

    def _handle_event(self, event: Any) -> None:
        """イベントを処理"""
        event_type = getattr(event, "type", None)

        if event_type == "input_audio_buffer.committed":
            self.sequencer.committed(event.item_id)

        elif event_type == "conversation.item.input_audio_transcription.completed":
            for fragment in self.sequencer.completed(event.item_id, event.transcript or ""):
                logger.debug("文字起こし: %s", fragment)
                if self.on_fragment:
                    self.on_fragment(fragment)

        elif event_type == "conversation.item.input_audio_transcription.failed":
            # 失敗した発話は空として扱い、後続の発話を止めない
            logger.warning("文字起こし失敗: item=%s", event.item_id)
            for fragment in self.sequencer.completed(event.item_id, ""):
                if self.on_fragment:
                    self.on_fragment(fragment)

        elif event_type == "error":
            error_obj = getattr(event, "error", None)
            message = getattr(error_obj, "message", None) or "Unknown error"
            self._report_error(f"Realtime APIエラー: {message}")

    def _report_error(self, message: str) -> None:
        if self.closing:
            return
        logger.error(message)
        if self.on_error:
            self.on_error(message)
