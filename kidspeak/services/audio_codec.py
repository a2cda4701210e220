"""
音声データの変換
マイク入力（float32）とストリーミング送信用PCM16、合成音声PCM16と再生用float32の相互変換
"""
import base64
from math import gcd

import numpy as np
from numpy.typing import NDArray
from scipy.signal import resample_poly

from kidspeak.models.schemas import MediaChunk

PCM_SCALE: float = 32767.0


def resample(samples: NDArray[np.floating], source_rate: int, target_rate: int) -> NDArray[np.float32]:
    """
    サンプリングレートを変換

    Args:
        samples: 音声データ（float）
        source_rate: 元のサンプリングレート
        target_rate: 変換後のサンプリングレート

    Returns:
        変換後の音声データ
    """
    data = np.asarray(samples, dtype=np.float32)
    if source_rate == target_rate or len(data) == 0:
        return data
    divisor = gcd(source_rate, target_rate)
    converted = resample_poly(data, target_rate // divisor, source_rate // divisor)
    return converted.astype(np.float32)


def float_to_pcm16(samples: NDArray[np.floating]) -> bytes:
    """float32（-1.0〜1.0）を16bit PCMのバイト列に変換"""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * PCM_SCALE).astype(np.int16).tobytes()


def encode_frame(
    samples: NDArray[np.floating], source_rate: int, target_rate: int
) -> MediaChunk:
    """
    マイク入力の1フレームを送信用チャンクに変換

    Args:
        samples: マイク入力（float32、モノラル）
        source_rate: 録音のサンプリングレート
        target_rate: 送信先が期待するサンプリングレート

    Returns:
        base64エンコードされたPCM16のチャンク
    """
    pcm_bytes = float_to_pcm16(resample(samples, source_rate, target_rate))
    return MediaChunk(
        data=base64.b64encode(pcm_bytes).decode("utf-8"),
        mime_type=f"audio/pcm;rate={target_rate}",
    )


def decode_pcm16(data: bytes) -> NDArray[np.float32]:
    """
    16bit PCM（リトルエンディアン）をfloat32に変換

    Args:
        data: PCM16のバイト列

    Returns:
        -1.0〜1.0のfloat32配列
    """
    # 奇数バイトの末尾は切り捨てる
    usable = len(data) - (len(data) % 2)
    int16_array = np.frombuffer(data[:usable], dtype="<i2")
    return int16_array.astype(np.float32) / 32768.0
