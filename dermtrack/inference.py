"""
DermTrack - Inference client

Sends lesion images to the vision model and validates its structured answers.

Uso:
    client = InferenceClient()
    result = await client.analyze(handle)
    comparison = await client.compare(before, after)
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from dermtrack import codec
from dermtrack.config import Config
from dermtrack.errors import ConfigurationError, ResponseFormatError
from dermtrack.schemas import AnalysisResult, BinaryHandle, ComparisonResult

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


# ============================================================================
# Esquemas de respuesta
# ============================================================================

ANALYSIS_SCHEMA = {
    "type": "object",
    "properties": {
        "conditionName": {"type": "string", "description": "The most likely name of the skin condition."},
        "confidence": {"type": "string", "description": "Confidence level (e.g., High, Medium, Low)."},
        "description": {"type": "string", "description": "A brief, easy-to-understand description of the condition."},
        "recommendations": {
            "type": "array",
            "items": {"type": "string"},
            "description": "A list of safe, general recommendations or next steps as per the system instruction.",
        },
    },
    "required": ["conditionName", "confidence", "description", "recommendations"],
    "additionalProperties": False,
}

COMPARISON_SCHEMA = {
    "type": "object",
    "properties": {
        "changeSummary": {"type": "string", "description": "A summary of the overall change."},
        "keyObservations": {
            "type": "array",
            "items": {"type": "string"},
            "description": "A list of specific visual changes observed between the two images.",
        },
        "recommendation": {"type": "string", "description": "A safe, general recommendation based on the observed changes."},
        "updatedConditionAssessment": {"type": "string", "description": "An updated assessment of the condition."},
        "postComparisonCondition": {"type": "string", "description": "The most likely name of the condition after comparing both images."},
    },
    "required": [
        "changeSummary",
        "keyObservations",
        "recommendation",
        "updatedConditionAssessment",
        "postComparisonCondition",
    ],
    "additionalProperties": False,
}


# ============================================================================
# Validación: Ok | SchemaError
# ============================================================================

@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class SchemaError:
    reason: str
    payload: str


ParseResult = Union[Ok[T], SchemaError]


def _parse(text: Optional[str], model: Type[T]) -> "ParseResult[T]":
    payload = (text or "").strip()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        return SchemaError(f"not valid JSON: {e}", payload)
    if not isinstance(data, dict):
        return SchemaError("expected a JSON object", payload)
    try:
        return Ok(model.model_validate(data))
    except ValidationError as e:
        return SchemaError(f"does not match {model.__name__}: {e.error_count()} error(s)", payload)


def parse_analysis(text: Optional[str]) -> "ParseResult[AnalysisResult]":
    """Validates an analysis payload and makes sure the disclaimer closes the recommendations"""
    parsed = _parse(text, AnalysisResult)
    if isinstance(parsed, Ok):
        recommendations = parsed.value.recommendations
        if not recommendations or recommendations[-1].strip() != Config.DISCLAIMER:
            logger.warning("Analysis response is missing the closing disclaimer; appending it")
            result = parsed.value.model_copy(update={"recommendations": [*recommendations, Config.DISCLAIMER]})
            return Ok(result)
    return parsed


def parse_comparison(text: Optional[str]) -> "ParseResult[ComparisonResult]":
    return _parse(text, ComparisonResult)


# ============================================================================
# Cliente
# ============================================================================

def _image_part(handle: BinaryHandle) -> Dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": codec.encode(handle)}}


def _text_part(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


class InferenceClient:
    def __init__(self, api_key: Optional[str] = None, model: str = Config.MODEL, client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        """
        Builds the SDK client on first use.

        A missing credential surfaces as a configuration error before any
        request is attempted.
        """
        if self._client is not None:
            return self._client
        api_key = self.api_key or os.environ.get(Config.API_KEY_ENV)
        if not api_key:
            raise ConfigurationError(f"{Config.API_KEY_ENV} environment variable is not set.")
        self._client = AsyncOpenAI(api_key=api_key, timeout=Config.INFERENCE_TIMEOUT)
        return self._client

    async def _complete(self, instruction: str, content: List[Dict[str, Any]], schema_name: str, schema: Dict[str, Any]) -> Optional[str]:
        client = self._get_client()
        completion = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": instruction},
                {"role": "user", "content": content},
            ],
            temperature=Config.TEMPERATURE,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema, "strict": True},
            },
        )
        return completion.choices[0].message.content

    async def analyze(self, handle: BinaryHandle) -> AnalysisResult:
        """Analiza una única imagen de lesión"""
        text = await self._complete(
            Config.ANALYSIS_INSTRUCTION,
            [_image_part(handle), _text_part("Please analyze this skin condition.")],
            "analysis_result",
            ANALYSIS_SCHEMA,
        )
        parsed = parse_analysis(text)
        if isinstance(parsed, SchemaError):
            logger.error(f"Failed to parse analysis response ({parsed.reason}): {parsed.payload}")
            raise ResponseFormatError(
                "The AI returned an unexpected response format. Please try again.",
                payload=parsed.payload,
            )
        return parsed.value

    async def compare(self, before: BinaryHandle, after: BinaryHandle) -> ComparisonResult:
        """Compara dos imágenes de la misma lesión, en el orden antes -> después"""
        text = await self._complete(
            Config.COMPARISON_INSTRUCTION,
            [
                _text_part("This is the first image (before):"),
                _image_part(before),
                _text_part("This is the second image (after):"),
                _image_part(after),
                _text_part("Please compare these two images of the same skin lesion and analyze the changes over time."),
            ],
            "comparison_result",
            COMPARISON_SCHEMA,
        )
        parsed = parse_comparison(text)
        if isinstance(parsed, SchemaError):
            logger.error(f"Failed to parse comparison response ({parsed.reason}): {parsed.payload}")
            raise ResponseFormatError(
                "The AI returned an unexpected response format for the comparison. Please try again.",
                payload=parsed.payload,
            )
        return parsed.value
