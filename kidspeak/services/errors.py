"""
エラー定義
サービス層で発生したエラーはすべてこのモジュールの例外に変換される
"""


class KidSpeakError(Exception):
    """アプリケーション例外の基底クラス"""


class GenerationError(KidSpeakError):
    """生成APIのレスポンスが不正、または呼び出しに失敗した"""


class ChannelError(KidSpeakError):
    """リアルタイム文字起こしの接続に失敗した、または切断された"""


class MicrophonePermissionError(ChannelError):
    """マイクが使用できない（権限がない、またはデバイスがない）"""


class PlaybackError(KidSpeakError):
    """スピーカーで音声を再生できない"""


class ThemeValidationError(KidSpeakError):
    """テーマが指定されていない"""


class InvalidTransitionError(KidSpeakError):
    """許可されていない状態遷移"""
