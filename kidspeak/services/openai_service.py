"""
OpenAI APIサービス
イラスト生成、台本生成、音声合成、発話の採点を行う
"""

import json
import logging
from typing import Any, Dict, List

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from kidspeak.config import GenerationConfig
from kidspeak.models.schemas import Illustration, ProficiencyLevel, ScriptContent
from kidspeak.services.errors import GenerationError
from kidspeak.services.level_policy import build_level_instructions

logger = logging.getLogger(__name__)


SCRIPT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "intro": {"type": "string"},
        "points": {"type": "array", "items": {"type": "string"}},
        "conclusion": {"type": "string"},
    },
    "required": ["intro", "points", "conclusion"],
    "additionalProperties": False,
}

SCORING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "score": {"type": "number"},
        "cefrLevel": {"type": "string"},
        "mistakes": {"type": "array", "items": {"type": "string"}},
        "feedback": {"type": "string"},
    },
    "required": ["score", "cefrLevel", "mistakes", "feedback"],
    "additionalProperties": False,
}

# 子ども向けにゆっくり、はっきり読み上げる
SPEECH_INSTRUCTIONS: str = (
    "Read this script very clearly, slowly (0.8x speed), and expressively "
    "with a friendly US English accent for a child."
)

# 音声合成の出力形式（pcm = 24kHz、16bit、モノラル）
SPEECH_SAMPLE_RATE: int = 24000


class OpenAIService:
    """OpenAI APIを使用するサービスクラス"""

    def _create_client(self, config: GenerationConfig) -> AsyncOpenAI:
        """
        呼び出しごとにクライアントを作成

        Args:
            config: 呼び出し時点の生成設定

        Returns:
            OpenAIクライアント（自動リトライなし）
        """
        if not config.has_api_key:
            raise GenerationError("APIキーが設定されていません")
        return AsyncOpenAI(
            api_key=config.api_key,
            timeout=config.request_timeout,
            max_retries=0,
        )

    async def generate_illustration(
        self, theme_text: str, config: GenerationConfig
    ) -> Illustration:
        """
        テーマからイラストを生成

        Args:
            theme_text: 発表テーマ
            config: 生成設定

        Returns:
            生成されたイラスト

        Raises:
            GenerationError: API呼び出しに失敗した、または画像データがない場合
        """
        prompt: str = (
            "A highly vibrant, cheerful, and detailed cartoon-style illustration for children "
            f"showing: {theme_text}. Use bright colors, clear lines, and friendly characters. "
            "Ensure there are many small interesting details for a child to describe "
            "(e.g., animals, toys, actions). High resolution, professional children's book style."
        )
        logger.info("イラスト生成開始: %s", theme_text)

        client = self._create_client(config)
        try:
            response = await client.images.generate(
                model=config.image_model,
                prompt=prompt,
                size="1536x1024",
                n=1,
            )
        except OpenAIError as e:
            raise GenerationError(f"イラスト生成エラー: {str(e)}") from e
        finally:
            await client.close()

        image_data: str | None = response.data[0].b64_json if response.data else None
        if not image_data:
            raise GenerationError("レスポンスに画像データがありません")
        return Illustration(data=image_data, mime_type="image/png")

    async def generate_script(
        self,
        illustration: Illustration,
        theme_text: str,
        level: ProficiencyLevel,
        config: GenerationConfig,
    ) -> ScriptContent:
        """
        イラストとテーマから発表の台本を生成

        Args:
            illustration: 生成済みのイラスト
            theme_text: 発表テーマ
            level: 英語レベル
            config: 生成設定

        Returns:
            台本（自己紹介、本文、まとめ）

        Raises:
            GenerationError: API呼び出しに失敗した、またはJSONが不正な場合
        """
        level_name: str = ProficiencyLevel(level).value
        prompt: str = f"""Based on this picture about "{theme_text}", create an English presentation script for a child learning English at {level_name} level (CEFR).

STRICT LANGUAGE REQUIREMENTS:
{build_level_instructions(level)}

The script must include:
1. An introduction starting with "Hello everyone, my name is [Name]..."
2. 4-6 descriptive sentences about what is happening in the picture.
3. A conclusion like "That is all. Thank you for listening."

IMPORTANT:
- Use ONLY vocabulary appropriate for {level_name} level
- Keep sentences SHORT and SIMPLE for lower levels
- Focus on clarity over complexity

Return the response in JSON format."""

        messages: List[Dict[str, Any]] = [
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": illustration.data_uri}},
                    {"type": "text", "text": prompt},
                ],
            }
        ]
        logger.info("台本生成開始: %s (%s)", theme_text, level_name)

        content = await self._complete_json(
            messages, "presentation_script", SCRIPT_SCHEMA, config
        )
        try:
            return ScriptContent.model_validate_json(content)
        except ValidationError as e:
            raise GenerationError(f"台本のJSON解析エラー: {str(e)}") from e

    async def synthesize_speech(self, text: str, config: GenerationConfig) -> bytes:
        """
        台本を読み上げる音声を生成

        Args:
            text: 読み上げるテキスト
            config: 生成設定

        Returns:
            PCM16（24kHz、モノラル）の音声データ

        Raises:
            GenerationError: API呼び出しに失敗した、または音声データがない場合
        """
        client = self._create_client(config)
        try:
            response = await client.audio.speech.create(
                model=config.speech_model,
                voice=config.speech_voice,
                input=text,
                instructions=SPEECH_INSTRUCTIONS,
                response_format="pcm",
            )
            audio_data: bytes = response.content
        except OpenAIError as e:
            raise GenerationError(f"音声生成エラー: {str(e)}") from e
        finally:
            await client.close()

        if not audio_data:
            raise GenerationError("音声データが生成されませんでした")
        return audio_data

    async def analyze_speech(
        self, reference_script: str, transcript: str, config: GenerationConfig
    ) -> Dict[str, Any]:
        """
        発話の書き起こしを台本と比較して採点

        Args:
            reference_script: 台本全文
            transcript: 子どもの発話の書き起こし
            config: 生成設定

        Returns:
            採点結果の辞書（score, cefrLevel, mistakes, feedback）

        Raises:
            GenerationError: API呼び出しに失敗した、またはJSONが不正な場合
        """
        prompt: str = f"""Analyze the following English speech transcript against the target script.
Target: "{reference_script}"
Transcript: "{transcript}"

Provide feedback for a child.
1. A score from 0-100.
2. CEFR Level (Pre-A1, A1, A2, B1).
3. A list of 2-3 specific words the child mispronounced or missed.
4. A short encouraging feedback message.

Return JSON."""

        messages: List[Dict[str, Any]] = [
            {
                "role": "system",
                "content": "You are a kind English teacher for children. Always respond in valid JSON format.",
            },
            {"role": "user", "content": prompt},
        ]
        content = await self._complete_json(messages, "speech_analysis", SCORING_SCHEMA, config)
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise GenerationError(f"採点結果のJSON解析エラー: {str(e)}") from e
        if not isinstance(data, dict):
            raise GenerationError("採点結果の形式が不正です")
        return data

    async def _complete_json(
        self,
        messages: List[Dict[str, Any]],
        schema_name: str,
        schema: Dict[str, Any],
        config: GenerationConfig,
    ) -> str:
        """JSONスキーマ指定でチャット補完を実行し、本文を返す"""
        client = self._create_client(config)
        try:
            response = await client.chat.completions.create(
                model=config.model,
                messages=messages,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": schema_name, "strict": True, "schema": schema},
                },
            )
        except OpenAIError as e:
            raise GenerationError(f"API呼び出しエラー: {str(e)}") from e
        finally:
            await client.close()

        content: str | None = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationError("レスポンスが空です")
        return content
