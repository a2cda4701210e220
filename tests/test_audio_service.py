"""
AudioServiceのテスト
"""
from unittest.mock import Mock, patch

import numpy as np
import pytest

try:
    import sounddevice as sd
except OSError:
    # PortAudioがインストールされていない環境
    pytest.skip("PortAudioライブラリが見つかりません", allow_module_level=True)

from kidspeak.services.audio_service import (
    AudioService,
    MicrophoneCapture,
    SpeechPlayer,
    _candidate_devices,
)
from kidspeak.services.errors import MicrophonePermissionError, PlaybackError


class TestCandidateDevices:
    """デバイス候補のテストクラス"""

    @patch("kidspeak.services.audio_service.sd.query_devices")
    @patch("kidspeak.services.audio_service.sd.default")
    def test_default_first(self, mock_default, mock_query_devices):
        """デフォルト、その他の対応デバイス、Noneの順"""
        mock_default.device = [2, 1]
        mock_query_devices.return_value = [
            {"name": "Mic A", "max_input_channels": 1, "max_output_channels": 0},
            {"name": "Speaker", "max_input_channels": 0, "max_output_channels": 2},
            {"name": "Mic B", "max_input_channels": 2, "max_output_channels": 0},
        ]

        assert _candidate_devices("input") == [2, 0, None]
        assert _candidate_devices("output") == [1, None]


class TestMicrophoneCapture:
    """MicrophoneCaptureのテストクラス"""

    @pytest.fixture
    def capture(self):
        return MicrophoneCapture(sample_rate=16000, upload_rate=24000, block_size=4096)

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.InputStream")
    def test_start_and_encode(self, mock_input_stream, mock_candidates, capture):
        """録音開始後、コールバックで送信用チャンクが渡される"""
        stream = Mock()
        mock_input_stream.return_value = stream
        on_chunk = Mock()

        capture.start(on_chunk)

        assert capture.is_active
        stream.start.assert_called_once()
        kwargs = mock_input_stream.call_args.kwargs
        assert kwargs["samplerate"] == 16000
        assert kwargs["blocksize"] == 4096
        assert kwargs["channels"] == 1

        callback = kwargs["callback"]
        callback(np.zeros((4096, 1), dtype=np.float32), 4096, {}, None)

        chunk = on_chunk.call_args.args[0]
        assert chunk.mime_type == "audio/pcm;rate=24000"

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[0, None])
    @patch("kidspeak.services.audio_service.sd.InputStream")
    def test_start_permission_denied(self, mock_input_stream, mock_candidates, capture):
        """どのデバイスも開けない場合はMicrophonePermissionError"""
        mock_input_stream.side_effect = sd.PortAudioError("permission denied")

        with pytest.raises(MicrophonePermissionError):
            capture.start(Mock())

        assert not capture.is_active
        assert mock_input_stream.call_count == 2

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[0, None])
    @patch("kidspeak.services.audio_service.sd.InputStream")
    def test_start_falls_back(self, mock_input_stream, mock_candidates, capture):
        """最初のデバイスが失敗したら次を試す"""
        stream = Mock()
        mock_input_stream.side_effect = [sd.PortAudioError("busy"), stream]

        capture.start(Mock())

        assert capture.stream is stream

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.InputStream")
    def test_stop_is_idempotent(self, mock_input_stream, mock_candidates, capture):
        """停止は何度呼んでもよい"""
        stream = Mock()
        mock_input_stream.return_value = stream
        capture.start(Mock())

        capture.stop()
        capture.stop()

        stream.stop.assert_called_once()
        stream.close.assert_called_once()
        assert not capture.is_active


class TestSpeechPlayer:
    """SpeechPlayerのテストクラス"""

    @pytest.fixture
    def player(self):
        return SpeechPlayer()

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.OutputStream")
    def test_play_once(self, mock_output_stream, mock_candidates, player):
        """再生中はもう一度再生しない"""
        mock_output_stream.return_value = Mock()
        waveform = np.ones(100, dtype=np.float32)

        assert player.play(waveform) is True
        assert player.is_playing
        assert player.play(waveform) is False
        assert mock_output_stream.call_count == 1

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.OutputStream")
    def test_finished_callback(self, mock_output_stream, mock_candidates, player):
        """再生終了で状態が戻りon_finishedが呼ばれる"""
        mock_output_stream.return_value = Mock()
        on_finished = Mock()

        player.play(np.ones(10, dtype=np.float32), on_finished=on_finished)
        mock_output_stream.call_args.kwargs["finished_callback"]()

        assert not player.is_playing
        on_finished.assert_called_once()

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.OutputStream")
    def test_callback_feeds_buffer(self, mock_output_stream, mock_candidates, player):
        """バッファを順に出力し、尽きたらCallbackStop"""
        mock_output_stream.return_value = Mock()
        player.play(np.array([0.1, 0.2, 0.3, 0.4, 0.5], dtype=np.float32))
        callback = mock_output_stream.call_args.kwargs["callback"]

        outdata = np.zeros((3, 1), dtype=np.float32)
        callback(outdata, 3, {}, None)
        assert np.allclose(outdata[:, 0], [0.1, 0.2, 0.3])

        outdata = np.ones((3, 1), dtype=np.float32)
        with pytest.raises(sd.CallbackStop):
            callback(outdata, 3, {}, None)
        assert np.allclose(outdata[:, 0], [0.4, 0.5, 0.0])

    def test_play_empty(self, player):
        assert player.play(np.zeros(0, dtype=np.float32)) is False

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.OutputStream")
    def test_play_failure(self, mock_output_stream, mock_candidates, player):
        """どのデバイスでも再生できない場合はPlaybackError"""
        mock_output_stream.side_effect = sd.PortAudioError("no device")

        with pytest.raises(PlaybackError):
            player.play(np.ones(10, dtype=np.float32))
        assert not player.is_playing

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.OutputStream")
    def test_stop(self, mock_output_stream, mock_candidates, player):
        stream = Mock()
        mock_output_stream.return_value = stream
        player.play(np.ones(10, dtype=np.float32))

        player.stop()
        player.stop()

        assert not player.is_playing
        stream.close.assert_called_once()


class TestAudioService:
    """AudioServiceのテストクラス"""

    @pytest.fixture
    def audio_service(self):
        return AudioService(upload_rate=24000)

    def test_init(self, audio_service):
        """初期化テスト"""
        assert audio_service.is_recording is False
        assert audio_service.is_playing is False
        assert audio_service.capture.sample_rate == 16000
        assert audio_service.capture.upload_rate == 24000

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.OutputStream")
    def test_play_speech_decodes_pcm(self, mock_output_stream, mock_candidates, audio_service):
        """PCM16を24kHzで再生"""
        mock_output_stream.return_value = Mock()
        pcm = np.array([0, 16384], dtype="<i2").tobytes()

        assert audio_service.play_speech(pcm) is True
        assert mock_output_stream.call_args.kwargs["samplerate"] == 24000

    @patch("kidspeak.services.audio_service._candidate_devices", return_value=[None])
    @patch("kidspeak.services.audio_service.sd.OutputStream")
    @patch("kidspeak.services.audio_service.sd.InputStream")
    def test_release_all(self, mock_input_stream, mock_output_stream, mock_candidates, audio_service):
        """マイクとスピーカーをすべて解放"""
        mock_input_stream.return_value = Mock()
        mock_output_stream.return_value = Mock()
        audio_service.start_capture(Mock())
        audio_service.play_speech(np.ones(4, dtype="<i2").tobytes())

        audio_service.release_all()

        assert not audio_service.is_recording
        assert not audio_service.is_playing
