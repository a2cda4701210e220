"""
音声入力/出力サービス
練習中のマイク録音（送信用エンコード）と、お手本音声の再生を行う
"""

import logging
import threading
from typing import Callable, List

import numpy as np
import sounddevice as sd
from numpy.typing import NDArray

from kidspeak.models.schemas import MediaChunk
from kidspeak.services.audio_codec import decode_pcm16, encode_frame
from kidspeak.services.errors import MicrophonePermissionError, PlaybackError

logger = logging.getLogger(__name__)

# 録音設定（16kHz、モノラル）
CAPTURE_SAMPLE_RATE: int = 16000
CAPTURE_BLOCK_SIZE: int = 4096

# 合成音声の再生設定（24kHz、モノラル）
PLAYBACK_SAMPLE_RATE: int = 24000


def _candidate_devices(kind: str) -> List[int | None]:
    """
    試行するデバイスのリストを作成

    Args:
        kind: "input" または "output"

    Returns:
        デフォルトデバイス、その他の対応デバイス、None（PortAudioの既定）の順のリスト
    """
    slot = 0 if kind == "input" else 1
    channel_key = "max_input_channels" if kind == "input" else "max_output_channels"
    candidates: List[int | None] = []

    # 1. デフォルトデバイス
    try:
        default_index = sd.default.device[slot]
        if default_index is not None and default_index >= 0:
            candidates.append(default_index)
    except (sd.PortAudioError, TypeError, IndexError) as e:
        logger.debug("デフォルトデバイスの取得に失敗: %s", str(e))

    # 2. その他の対応デバイス
    try:
        for i, device in enumerate(sd.query_devices()):
            if device[channel_key] > 0 and i not in candidates:
                candidates.append(i)
    except sd.PortAudioError as e:
        logger.debug("デバイス一覧の取得に失敗: %s", str(e))

    # 最後にNoneを追加（デフォルトの挙動を試す）
    if None not in candidates:
        candidates.append(None)
    return candidates


class MicrophoneCapture:
    """マイク入力を送信用チャンクに変換し続ける（練習1回ごとに取得・解放）"""

    def __init__(
        self,
        sample_rate: int = CAPTURE_SAMPLE_RATE,
        upload_rate: int = CAPTURE_SAMPLE_RATE,
        block_size: int = CAPTURE_BLOCK_SIZE,
    ) -> None:
        self.sample_rate: int = sample_rate
        self.upload_rate: int = upload_rate
        self.block_size: int = block_size
        self.stream: sd.InputStream | None = None

    @property
    def is_active(self) -> bool:
        return self.stream is not None

    def start(self, on_chunk: Callable[[MediaChunk], None]) -> None:
        """
        録音を開始

        Args:
            on_chunk: 変換済みチャンクを受け取るコールバック（録音スレッドから順番に呼ばれる）

        Raises:
            MicrophonePermissionError: どのデバイスでもマイクを開けなかった場合
        """
        if self.stream is not None:
            return

        def audio_callback(
            indata: NDArray[np.floating], frames: int, time_info: dict, status: sd.CallbackFlags
        ) -> None:
            """sounddeviceのコールバック関数"""
            if status:
                logger.debug("Audio callback status: %s", status)
            samples = indata[:, 0] if indata.ndim > 1 else indata
            on_chunk(encode_frame(samples, self.sample_rate, self.upload_rate))

        last_error: Exception | None = None
        for device_index in _candidate_devices("input"):
            stream = None
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype=np.float32,
                    blocksize=self.block_size,
                    callback=audio_callback,
                    device=device_index,
                )
                stream.start()
            except (sd.PortAudioError, ValueError) as e:
                if stream is not None:
                    stream.close()
                logger.warning("録音デバイス %s でのエラー: %s", device_index, str(e))
                last_error = e
                continue

            self.stream = stream
            logger.info("マイク入力ストリームを開始しました (Device: %s)", device_index)
            return

        raise MicrophonePermissionError(
            f"マイクを使用できません。マイクの接続と権限を確認してください: {str(last_error)}"
        )

    def stop(self) -> None:
        """録音を停止（何度呼んでもよい）"""
        stream = self.stream
        self.stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("マイク入力ストリームを停止しました")

    def __enter__(self) -> "MicrophoneCapture":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


class SpeechPlayer:
    """合成音声の再生（同時に再生できるのは1つだけ）"""

    def __init__(self) -> None:
        self.stream: sd.OutputStream | None = None
        self.is_playing: bool = False
        self._lock = threading.Lock()
        self._buffer: NDArray[np.float32] = np.zeros(0, dtype=np.float32)
        self._position: int = 0

    def play(
        self,
        waveform: NDArray[np.floating],
        sample_rate: int = PLAYBACK_SAMPLE_RATE,
        on_finished: Callable[[], None] | None = None,
    ) -> bool:
        """
        再生を開始

        Args:
            waveform: 再生する音声（float32、モノラル）
            sample_rate: サンプリングレート
            on_finished: 再生終了（停止を含む）時のコールバック（音声スレッドから呼ばれる）

        Returns:
            再生を開始した場合True、既に再生中または音声が空の場合False

        Raises:
            PlaybackError: どのデバイスでも再生できなかった場合
        """
        if self.is_playing or len(waveform) == 0:
            return False
        self._close_stream()

        with self._lock:
            self._buffer = np.asarray(waveform, dtype=np.float32)
            self._position = 0

        def audio_callback(
            outdata: NDArray[np.floating], frames: int, time_info: dict, status: sd.CallbackFlags
        ) -> None:
            """バッファから順に出力する"""
            with self._lock:
                chunk = self._buffer[self._position:self._position + frames]
                self._position += len(chunk)
            outdata[: len(chunk), 0] = chunk
            outdata[len(chunk):] = 0
            if len(chunk) < frames:
                raise sd.CallbackStop

        def finished_callback() -> None:
            self.is_playing = False
            if on_finished:
                on_finished()

        last_error: Exception | None = None
        for device_index in _candidate_devices("output"):
            stream = None
            try:
                stream = sd.OutputStream(
                    samplerate=sample_rate,
                    channels=1,
                    dtype=np.float32,
                    callback=audio_callback,
                    finished_callback=finished_callback,
                    device=device_index,
                )
                self.is_playing = True
                stream.start()
            except (sd.PortAudioError, ValueError) as e:
                self.is_playing = False
                if stream is not None:
                    stream.close()
                logger.warning("再生デバイス %s でのエラー: %s", device_index, str(e))
                last_error = e
                continue

            self.stream = stream
            logger.info("再生を開始します (Device: %s)", device_index)
            return True

        raise PlaybackError(
            f"音声出力デバイスの初期化に失敗しました。スピーカーの接続を確認してください: {str(last_error)}"
        )

    def stop(self) -> None:
        """再生を停止してデバイスを解放（何度呼んでもよい）"""
        self.is_playing = False
        self._close_stream()

    def _close_stream(self) -> None:
        stream = self.stream
        self.stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class AudioService:
    """音声入力/出力を管理するサービスクラス"""

    def __init__(self, upload_rate: int = CAPTURE_SAMPLE_RATE) -> None:
        """
        初期化処理

        Args:
            upload_rate: 送信先が期待するサンプリングレート
        """
        self.capture: MicrophoneCapture = MicrophoneCapture(upload_rate=upload_rate)
        self.player: SpeechPlayer = SpeechPlayer()

    @property
    def is_recording(self) -> bool:
        return self.capture.is_active

    @property
    def is_playing(self) -> bool:
        return self.player.is_playing

    def start_capture(self, on_chunk: Callable[[MediaChunk], None]) -> None:
        """マイク録音を開始"""
        self.capture.start(on_chunk)

    def stop_capture(self) -> None:
        """マイク録音を停止"""
        self.capture.stop()

    def play_speech(self, pcm_data: bytes, on_finished: Callable[[], None] | None = None) -> bool:
        """
        合成音声（PCM16、24kHz）を再生

        Args:
            pcm_data: 音声合成APIの出力
            on_finished: 再生終了時のコールバック

        Returns:
            再生を開始した場合True
        """
        return self.player.play(decode_pcm16(pcm_data), PLAYBACK_SAMPLE_RATE, on_finished)

    def stop_speech(self) -> None:
        """再生を停止"""
        self.player.stop()

    def release_all(self) -> None:
        """マイクとスピーカーをすべて解放"""
        try:
            self.capture.stop()
        finally:
            self.player.stop()
