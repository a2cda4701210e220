"""
評価サービス
子どもの発話を台本と比較して採点する
"""
import logging

from pydantic import ValidationError

from kidspeak.config import GenerationConfig
from kidspeak.models.schemas import PracticeResult, ScoringResponse
from kidspeak.services.errors import GenerationError
from kidspeak.services.openai_service import OpenAIService

logger = logging.getLogger(__name__)

DEFAULT_FEEDBACK = "Great job! Keep practicing and you will get even better."


class EvaluationService:
    """練習の採点を実行するサービスクラス"""

    def __init__(self, openai_service: OpenAIService | None = None) -> None:
        """
        初期化処理

        Args:
            openai_service: 採点に使うOpenAIサービス（省略時は新規作成）
        """
        self.openai_service: OpenAIService = openai_service or OpenAIService()

    async def score(
        self, reference_script: str, transcript: str, config: GenerationConfig
    ) -> PracticeResult:
        """
        発話を採点

        Args:
            reference_script: 台本全文
            transcript: 発話の書き起こし（空でないこと）
            config: 生成設定

        Returns:
            練習結果

        Raises:
            GenerationError: 採点APIのレスポンスが不正な場合
        """
        if not transcript.strip():
            raise ValueError("書き起こしが空のため採点できません")

        raw = await self.openai_service.analyze_speech(reference_script, transcript, config)
        try:
            response = ScoringResponse.model_validate(raw)
        except ValidationError as e:
            raise GenerationError(f"採点結果の形式が不正です: {str(e)}") from e

        # スコアは0〜100に収める
        score: float = min(max(response.score, 0.0), 100.0)
        feedback: str = response.feedback.strip() or DEFAULT_FEEDBACK
        mistakes: list[str] = [m.strip() for m in response.mistakes if m.strip()]

        try:
            result = PracticeResult(
                score=score,
                cefr_level=response.cefrLevel,
                mistakes=mistakes,
                feedback=feedback,
                transcript=transcript,
            )
        except ValidationError as e:
            raise GenerationError(f"採点結果の形式が不正です: {str(e)}") from e

        logger.info("採点完了: score=%.1f, level=%s", score, response.cefrLevel)
        return result
