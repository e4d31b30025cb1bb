"""
Response Sanitizer

Turns raw provider text into a validated structure. Runs between the gateway's
provider call and schema validation, independent of which model answered.

Stages:
1. strip surrounding whitespace
2. remove Markdown code fences (```json ... ```)
3. isolate the first decodable JSON object or array from any surrounding prose
4. ``json.loads``
5. validate against an optional pydantic model
"""

import json
import logging
import re
from typing import Any, Callable, List, Optional, Type

from pydantic import BaseModel, ValidationError

from science_buddy.exceptions import StructuredOutputError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


def strip_whitespace(text: str) -> str:
    return text.strip()


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


_DECODER = json.JSONDecoder()


def isolate_json_body(text: str) -> str:
    """
    Cut the text down to the first ``{...}`` or ``[...]`` block that decodes.

    Bracketed prose before the payload (``Profile [v1]: {...}``) is skipped.
    Text without any decodable block is returned unchanged so that parsing
    reports the original error.
    """
    for start, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            _, end = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        return text[start:end]
    return text


DEFAULT_STAGES: List[Callable[[str], str]] = [
    strip_whitespace,
    strip_code_fences,
    isolate_json_body,
]


class ResponseSanitizer:
    """Text-cleaning pipeline followed by parsing and optional validation."""

    def __init__(self, stages: Optional[List[Callable[[str], str]]] = None):
        self.stages = list(stages) if stages is not None else list(DEFAULT_STAGES)

    def clean(self, text: str) -> str:
        for stage in self.stages:
            text = stage(text)
        return text

    def parse(self, text: Optional[str], schema: Optional[Type[BaseModel]] = None) -> Any:
        """
        Clean, parse and validate a structured response.

        Args:
            text: Raw provider output
            schema: Pydantic model the payload must satisfy

        Returns:
            The validated model instance, or the parsed JSON when no schema is given

        Raises:
            StructuredOutputError: On empty, unparseable or invalid payloads
        """
        if not text or not text.strip():
            raise StructuredOutputError("Empty structured response")

        cleaned = self.clean(text)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.debug(f"🧹 [ResponseSanitizer] JSON parse failed: {e}")
            raise StructuredOutputError(f"Response is not valid JSON: {e}") from e

        if schema is None:
            return data

        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.debug(f"🧹 [ResponseSanitizer] Schema validation failed: {e}")
            raise StructuredOutputError(f"Response does not match {schema.__name__}") from e
