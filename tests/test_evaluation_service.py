"""
EvaluationServiceのテスト
"""
from unittest.mock import AsyncMock, Mock

import pytest

from kidspeak.config import GenerationConfig
from kidspeak.services.errors import GenerationError
from kidspeak.services.evaluation_service import DEFAULT_FEEDBACK, EvaluationService


class TestEvaluationService:
    """EvaluationServiceのテストクラス"""

    @pytest.fixture
    def config(self):
        return GenerationConfig(api_key="test_key")

    @pytest.fixture
    def mock_openai_service(self):
        service = Mock()
        service.analyze_speech = AsyncMock()
        return service

    @pytest.fixture
    def evaluation_service(self, mock_openai_service):
        return EvaluationService(mock_openai_service)

    @pytest.mark.asyncio
    async def test_score_success(self, evaluation_service, mock_openai_service, config):
        """採点成功のテスト"""
        mock_openai_service.analyze_speech.return_value = {
            "score": 70,
            "cefrLevel": "Pre-A1",
            "mistakes": ["dog"],
            "feedback": "Good try!",
        }

        result = await evaluation_service.score("I have a dog", "I have a cat", config)

        assert 0 <= result.score <= 100
        assert result.score == 70
        assert result.cefr_level == "Pre-A1"
        assert result.mistakes == ["dog"]
        assert result.feedback == "Good try!"
        assert result.transcript == "I have a cat"
        mock_openai_service.analyze_speech.assert_awaited_once_with(
            "I have a dog", "I have a cat", config
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_score, expected", [(150, 100), (-20, 0)])
    async def test_score_is_clamped(self, evaluation_service, mock_openai_service, config, raw_score, expected):
        """範囲外のスコアは0〜100に収める"""
        mock_openai_service.analyze_speech.return_value = {
            "score": raw_score,
            "cefrLevel": "A1",
            "mistakes": [],
            "feedback": "ok",
        }

        result = await evaluation_service.score("I have a dog", "I have a dog", config)

        assert result.score == expected

    @pytest.mark.asyncio
    async def test_blank_feedback_uses_default(self, evaluation_service, mock_openai_service, config):
        """フィードバックが空の場合は既定の励ましメッセージ"""
        mock_openai_service.analyze_speech.return_value = {
            "score": 90,
            "cefrLevel": "A1",
            "mistakes": ["  ", "lion"],
            "feedback": " ",
        }

        result = await evaluation_service.score("I see a lion", "I see a lion", config)

        assert result.feedback == DEFAULT_FEEDBACK
        assert result.mistakes == ["lion"]

    @pytest.mark.asyncio
    async def test_malformed_response(self, evaluation_service, mock_openai_service, config):
        """必須項目が欠けたレスポンスはGenerationError"""
        mock_openai_service.analyze_speech.return_value = {"feedback": "Nice"}

        with pytest.raises(GenerationError):
            await evaluation_service.score("I have a dog", "I have a cat", config)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_score", [float("nan"), float("inf")])
    async def test_non_finite_score(self, evaluation_service, mock_openai_service, config, raw_score):
        """NaNや無限大のスコアはGenerationError"""
        mock_openai_service.analyze_speech.return_value = {
            "score": raw_score,
            "cefrLevel": "A1",
            "mistakes": [],
            "feedback": "ok",
        }

        with pytest.raises(GenerationError):
            await evaluation_service.score("I have a dog", "I have a dog", config)

    @pytest.mark.asyncio
    async def test_blank_transcript(self, evaluation_service, mock_openai_service, config):
        """空の書き起こしは採点しない"""
        with pytest.raises(ValueError):
            await evaluation_service.score("I have a dog", "   ", config)
        mock_openai_service.analyze_speech.assert_not_awaited()
