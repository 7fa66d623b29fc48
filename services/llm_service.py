# File: services/llm_service.py
import base64
import json
import logging
import re
import time
from typing import Any, Dict, List, Literal, Optional, Sequence

from openai import APIStatusError, OpenAI
from pydantic import BaseModel, Field, ValidationError, field_validator

from services.llm_factory import LLMFactory, LLMProvider

logger = logging.getLogger(__name__)

FALLBACK_MODELS = ["gemini-flash-latest", "gemini-2.5-flash"]
TRANSIENT_STATUS_CODES = {503}
DEFAULT_RETRY_DELAY = 1.0

STEP_PROMPT = """You are an expert at analyzing how people work in software user interfaces.
The following images are screen captures in chronological order.
Considering all of them together, describe the steps the user performed as JSON only. Do not output any other text.
JSON schema:
{
  "steps": [
    {
      "type": "click|input|navigate|wait|decision",
      "action": "one-line summary",
      "description": "2-3 line explanation",
      "confidence": 0-100
    }
  ]
}
"""

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


class StepInferenceError(Exception):
    """Raised when no model in the fallback list produced usable steps."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class StepParseError(Exception):
    """Raised when a model response does not contain a valid steps object."""
    pass


class InferredStep(BaseModel):
    type: Literal["click", "input", "navigate", "wait", "decision"]
    action: str
    description: str = ""
    confidence: int = Field(default=0, ge=0, le=100)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> int:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0
        return int(round(min(max(number, 0.0), 100.0)))


def extract_json(text: str) -> Dict[str, Any]:
    """
    Pulls a JSON object out of free-form model output.
    Tries a fenced code block, then the outermost brace span, then the raw text.
    """
    try:
        block = _FENCED_BLOCK.search(text)
        if block:
            return json.loads(block.group(1))

        first = text.find("{")
        last = text.rfind("}")
        if first != -1 and last > first:
            return json.loads(text[first:last + 1])

        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise StepParseError(f"Failed to parse JSON from model response: {e}") from e


def parse_steps(text: str) -> List[InferredStep]:
    payload = extract_json(text or "")
    if not isinstance(payload, dict) or not isinstance(payload.get("steps"), list):
        raise StepParseError("Model response is missing a 'steps' array")

    try:
        return [InferredStep.model_validate(step) for step in payload["steps"]]
    except ValidationError as e:
        raise StepParseError(f"Invalid step in model response: {e}") from e


def encode_frames(frame_paths: Sequence[str]) -> List[Dict[str, Any]]:
    parts = []
    for path in frame_paths:
        with open(path, "rb") as f:
            data = base64.b64encode(f.read()).decode("ascii")
        parts.append({
            "type": "image_url",
            "image_url": {"url": f"data:image/jpeg;base64,{data}"},
        })
    return parts


def build_prompt(prompt_extras: str = "") -> str:
    return f"{STEP_PROMPT}{prompt_extras}"


def default_models() -> List[str]:
    primary = LLMFactory.get_default_model(LLMProvider.GEMINI)
    return [primary] + [m for m in FALLBACK_MODELS if m != primary]


def infer_steps(
    frame_paths: Sequence[str],
    models: Optional[Sequence[str]] = None,
    prompt_extras: str = "",
    retry_delay: float = DEFAULT_RETRY_DELAY,
    client: Optional[OpenAI] = None,
) -> List[InferredStep]:
    """
    Sends ordered frames to the vision model and returns the inferred steps.

    Models are tried in order. A 503 from the service waits ``retry_delay``
    and moves on to the next model; any other HTTP status stops immediately.
    Errors without a status (unparseable output, connection failures) also
    move on.

    Raises:
        StepInferenceError: When no model produced valid steps.
    """
    if not frame_paths:
        raise StepInferenceError("No frames to analyze")

    models = list(models or default_models())
    client = client or LLMFactory.get_client(LLMProvider.GEMINI)

    content: List[Dict[str, Any]] = encode_frames(frame_paths)
    content.append({"type": "text", "text": build_prompt(prompt_extras)})
    messages = [{"role": "user", "content": content}]

    last_error: Optional[BaseException] = None
    for index, model in enumerate(models):
        try:
            logger.info(f"[Gemini] Trying model: {model}")
            response = client.chat.completions.create(model=model, messages=messages)

            if not response.choices or not response.choices[0].message.content:
                raise StepParseError("Model returned an empty response")

            steps = parse_steps(response.choices[0].message.content)
            logger.info(f"[Gemini] Model {model} returned {len(steps)} step(s)")
            return steps

        except APIStatusError as e:
            last_error = e
            logger.warning(f"[Gemini] Model {model} failed with status {e.status_code}: {e}")
            if e.status_code not in TRANSIENT_STATUS_CODES:
                raise StepInferenceError(f"Model {model} failed with status {e.status_code}", e) from e

        except Exception as e:
            last_error = e
            logger.warning(f"[Gemini] Model {model} failed: {e}")

        if index < len(models) - 1 and retry_delay > 0:
            time.sleep(retry_delay)

    raise StepInferenceError("All Gemini models failed", last_error) from last_error
