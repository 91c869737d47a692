"""Structured entity extraction for knowledge-graph indexing.

The language model is asked for a JSON object describing the entities of one
document. Model output is frequently wrapped in markdown fences, surrounded
by chatter or slightly malformed, so every response goes through
``strip_code_fences`` -> ``repair_json`` -> parse -> validate. A response
that still does not parse is retried with exponential backoff, up to a fixed
number of attempts, checking the abort token before each attempt and each
backoff sleep. Callers only ever receive a validated ``DocumentExtraction``
or an explicit ``ExtractionFailedError`` / ``ExtractionCancelledError``.
"""

import asyncio
import re
from enum import StrEnum
from typing import Any, Protocol

import orjson
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from ..config.defaults import (
    DEFAULT_EXTRACTION_BACKOFF_CAP_SECONDS,
    DEFAULT_EXTRACTION_BACKOFF_SECONDS,
    DEFAULT_EXTRACTION_MAX_ATTEMPTS,
)
from .cancellation import AbortToken, is_aborted
from .exceptions import ExtractionCancelledError, ExtractionFailedError

CONTENT_PLACEHOLDER = "[CONTENT_TO_EXTRACT]"


class EntityType(StrEnum):
    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    LOCATION = "LOCATION"
    PROJECT = "PROJECT"
    PRODUCT = "PRODUCT"
    DATE = "DATE"
    CONCEPT = "CONCEPT"
    TECHNOLOGY = "TECHNOLOGY"


EXTRACTION_PROMPT = f"""You are an AI assistant specialized in extracting structured information from text for a knowledge graph. Your output must be ONLY in valid JSON format. Do not include any explanations, apologies, or conversational text before or after the JSON output. Adhere strictly to the requested JSON schema.

**Input Text:**

{CONTENT_PLACEHOLDER}

**Task Instructions:**
1. Identify all distinct entities in the text.
2. For each entity, provide:
   - `id`: A temporary, unique ID for this entity within this document (e.g., "e1", "e2", "e3").
   - `name`: The canonical name of the entity.
   - `type`: The entity type. Choose *only* from this list: {", ".join(t.value for t in EntityType)}.
   - `description`: A concise description of the entity based *only* on the provided text.
   - `source_text_snippets`: A list of 1-3 exact snippets from the input text that mention this entity.

3. The output JSON must follow this structure:
{{
  "document_id": "auto_filled_by_system",
  "entities": [
    {{
      "id": "e1",
      "name": "Entity Name",
      "type": "ENTITY_TYPE",
      "description": "Description of entity based on the text",
      "source_text_snippets": ["Exact text snippet 1", "Exact text snippet 2"]
    }}
  ]
}}

Important guidelines:
- Focus on extracting substantive entities that provide meaningful context.
- Include key concepts, technical terms, and important ideas as CONCEPT entities.
- For technical documents, extract relevant technologies, frameworks, or methods as TECHNOLOGY entities.
- The "source_text_snippets" should be exact matches from the document."""


class ExtractedEntity(BaseModel):
    """One entity found in a document."""

    id: str
    name: str
    type: EntityType
    description: str = ""
    source_text_snippets: list[str] = Field(default_factory=list)


class DocumentExtraction(BaseModel):
    """Entities extracted from one document, stamped with its identity."""

    document_id: str
    entities: list[ExtractedEntity] = Field(default_factory=list)


class CompletionClient(Protocol):
    """Structured-extraction capability: prompt in, free-form text out."""

    async def complete(self, prompt: str) -> str: ...


def build_prompt(text: str) -> str:
    return EXTRACTION_PROMPT.replace(CONTENT_PLACEHOLDER, text)


_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def strip_code_fences(response: str) -> str:
    """Remove markdown code fences around (or inside) a model response."""
    cleaned = response.strip()
    if "```" not in cleaned:
        return cleaned

    fenced = _FENCE_PATTERN.findall(cleaned)
    if fenced:
        return "\n".join(block.strip() for block in fenced).strip()

    # Unterminated fence: drop the opening line
    first_newline = cleaned.find("\n")
    if cleaned.startswith("```") and first_newline > 0:
        cleaned = cleaned[first_newline + 1 :]
    return cleaned.replace("```", "").strip()


def repair_json(json_str: str) -> str:
    """Clean common JSON formatting issues from LLM responses.

    - drops text before the first ``{`` and after the matching last ``}``
    - removes trailing commas before closing brackets
    - escapes raw newlines inside string values
    - closes brackets left open by a truncated response
    """
    json_str = json_str.strip()

    start = json_str.find("{")
    end = json_str.rfind("}")
    if start > 0:
        json_str = json_str[start:]
        end = json_str.rfind("}")
    if end != -1 and end < len(json_str) - 1:
        json_str = json_str[: end + 1]

    # Remove any trailing comma before closing brackets (common LLM mistake)
    json_str = re.sub(r",(\s*[}\]])", r"\1", json_str)

    def escape_newlines_in_strings(match: re.Match) -> str:
        return re.sub(r"(?<!\\)\n", r"\\n", match.group(0))

    json_str = re.sub(r'"(?:[^"\\]|\\.)*"', escape_newlines_in_strings, json_str)

    return _close_open_brackets(json_str)


def _close_open_brackets(json_str: str) -> str:
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in json_str:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()

    if in_string:
        json_str += '"'
    return json_str + "".join(reversed(stack))


def parse_extraction(response: str, document_id: str) -> DocumentExtraction:
    """Parse one model response into a ``DocumentExtraction``.

    Entities that do not validate (unknown type, missing name...) are
    dropped with a warning; the document itself still parses.

    Raises:
        ValueError: If no JSON object can be recovered from the response
    """
    cleaned = repair_json(strip_code_fences(response))
    try:
        data: Any = orjson.loads(cleaned)
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Model output is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

    raw_entities = data.get("entities") or []
    if not isinstance(raw_entities, list):
        raise ValueError("'entities' must be a list")

    entities = []
    for item in raw_entities:
        if isinstance(item, dict) and isinstance(item.get("type"), str):
            item = {**item, "type": item["type"].strip().upper()}
        try:
            entities.append(ExtractedEntity.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping invalid entity from {document_id}: {e.errors()[0]['msg']}")
            continue

    # The document's own identity always wins over whatever the model echoed
    return DocumentExtraction(document_id=document_id, entities=entities)


class StructuredExtractor:
    """Runs the extraction prompt against a completion client with bounded retries."""

    def __init__(
        self,
        client: CompletionClient,
        max_attempts: int = DEFAULT_EXTRACTION_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_EXTRACTION_BACKOFF_SECONDS,
        backoff_cap_seconds: float = DEFAULT_EXTRACTION_BACKOFF_CAP_SECONDS,
    ) -> None:
        """Initialize extractor.

        Args:
            client: Language model client exposing ``complete(prompt)``
            max_attempts: Model calls allowed before giving up
            backoff_seconds: Delay after the first failed attempt (doubles each time)
            backoff_cap_seconds: Upper bound for a single backoff delay
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_cap_seconds = backoff_cap_seconds

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.backoff_cap_seconds)

    async def extract(
        self, document_id: str, text: str, abort: AbortToken | None = None
    ) -> DocumentExtraction:
        """Extract entities from a document.

        Args:
            document_id: Identity stamped onto the result
            text: Raw document text
            abort: Run's abort token, checked before every attempt and backoff

        Returns:
            Parsed extraction

        Raises:
            ExtractionCancelledError: If the abort token was set
            ExtractionFailedError: If no attempt produced parseable output
        """
        prompt = build_prompt(text)
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            if is_aborted(abort):
                raise ExtractionCancelledError(
                    f"Extraction cancelled for {document_id}",
                    {"document_id": document_id, "attempt": attempt},
                )

            try:
                response = await self.client.complete(prompt)
                extraction = parse_extraction(response, document_id)
                logger.debug(
                    f"Extracted {len(extraction.entities)} entities from {document_id} "
                    f"(attempt {attempt})"
                )
                return extraction
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Extraction attempt {attempt}/{self.max_attempts} failed for "
                    f"{document_id}: {e}"
                )

            if attempt < self.max_attempts:
                if is_aborted(abort):
                    raise ExtractionCancelledError(
                        f"Extraction cancelled for {document_id}",
                        {"document_id": document_id, "attempt": attempt},
                    )
                await asyncio.sleep(self._backoff(attempt))

        raise ExtractionFailedError(
            f"Extraction failed for {document_id} after {self.max_attempts} attempts: "
            f"{last_error}",
            attempts=self.max_attempts,
            context={"document_id": document_id},
        )
