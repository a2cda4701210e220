"""
データモデル（スキーマ定義）
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field

# 台本の自己紹介に含まれる名前のプレースホルダー
NAME_PLACEHOLDER = "[Name]"


class Theme(BaseModel):
    """発表テーマのデータモデル"""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    icon: str
    description: str = ""


class ProficiencyLevel(str, Enum):
    """英語レベル（語彙数の少ない順 = 易しい順）"""

    STARTER = "STARTER"
    A1 = "A1"
    MOVER = "MOVER"
    A2 = "A2"
    FLYER = "FLYER"
    B1 = "B1"
    B2 = "B2"


class LevelPolicy(BaseModel):
    """レベルごとの語彙・文法の制約"""

    model_config = ConfigDict(frozen=True)

    label: str
    description: str
    vocabulary_size: int  # 目標語彙数
    min_sentence_words: int
    max_sentence_words: int
    grammar: List[str]  # 文法の制約
    connectors: List[str]  # 使用できる接続詞（空なら接続詞なし）
    example: str  # 例文
    min_script_words: int
    max_script_words: int


class Illustration(BaseModel):
    """生成されたイラスト画像"""

    model_config = ConfigDict(frozen=True)

    data: str  # base64エンコードされた画像データ
    mime_type: str = "image/png"

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class ScriptContent(BaseModel):
    """台本生成APIのレスポンス"""

    intro: str
    points: List[str]
    conclusion: str


class PresentationData(BaseModel):
    """発表データ（イラストと台本）"""

    model_config = ConfigDict(frozen=True)

    illustration: Illustration
    intro: str
    points: List[str]
    conclusion: str
    script: str  # 読み上げ・採点に使う台本全文

    @classmethod
    def from_script(
        cls, illustration: Illustration, content: ScriptContent, child_name: str
    ) -> "PresentationData":
        """
        生成された台本から発表データを作成

        Args:
            illustration: イラスト画像
            content: 台本生成APIのレスポンス
            child_name: 自己紹介に差し込む子どもの名前

        Returns:
            名前を差し込んだ発表データ
        """
        intro = content.intro.replace(NAME_PLACEHOLDER, child_name)
        parts = [intro, *content.points, content.conclusion]
        script = " ".join(part for part in parts if part.strip())
        return cls(
            illustration=illustration,
            intro=intro,
            points=list(content.points),
            conclusion=content.conclusion,
            script=script,
        )


class ScoringResponse(BaseModel):
    """採点APIのレスポンス"""

    score: float = Field(allow_inf_nan=False)
    cefrLevel: str
    mistakes: List[str] = Field(default_factory=list)
    feedback: str = ""


class PracticeResult(BaseModel):
    """練習結果のデータモデル"""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0, le=100)
    cefr_level: str
    mistakes: List[str]
    feedback: str
    transcript: str


class MediaChunk(BaseModel):
    """ストリーミング送信する音声チャンク"""

    model_config = ConfigDict(frozen=True)

    data: str  # base64エンコードされたPCM16
    mime_type: str


class SessionStatus(str, Enum):
    """セッションの状態"""

    IDLE = "IDLE"
    GENERATING_IMAGE = "GENERATING_IMAGE"
    GENERATING_SCRIPT = "GENERATING_SCRIPT"
    READY = "READY"
    PRACTICING = "PRACTICING"
    SCORING = "SCORING"
    RESULT = "RESULT"
    ERROR = "ERROR"


class FailedAction(str, Enum):
    """エラーが発生した操作"""

    GENERATE = "generate"
    PRACTICE = "practice"
    SCORING = "scoring"
    PLAYBACK = "playback"


class ErrorRecord(BaseModel):
    """直近のエラー情報"""

    model_config = ConfigDict(frozen=True)

    kind: str  # 例外クラス名
    message: str
    action: FailedAction


class SessionSnapshot(BaseModel):
    """画面表示用のセッション状態（読み取り専用）"""

    model_config = ConfigDict(frozen=True)

    status: SessionStatus
    presentation: PresentationData | None = None
    fragments: List[str] = Field(default_factory=list)
    transcript: str = ""
    result: PracticeResult | None = None
    error: ErrorRecord | None = None
    is_playing: bool = False
    theme_text: str | None = None
    level: ProficiencyLevel = ProficiencyLevel.STARTER
