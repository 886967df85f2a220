"""Extraction adapter — turns one row (or a text blob) into entity/relationship assertions.

The LLM is an external collaborator. This module owns the contract around
it: the strict-rules prompt, retry with exponential backoff on transient
failure, deterministic temperature, and JSON repair. Whatever goes wrong,
`extract()` returns an ExtractionResult; an unusable response is an empty
result, which the reconciler treats as "no assertions for this row".
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from loomgraph.extraction.llm_client import LLMClient, LLMError
from loomgraph.graph.models import DEFAULT_ENTITY_TYPE, UNKNOWN_RELATIONSHIP_TYPE, MappingRule
from loomgraph.logging import get_logger

log = get_logger("extraction")


# ---------------------------------------------------------------------------
# Extraction result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ExtractedEntity:
    """An entity asserted by the LLM for one row."""

    label: str
    entity_type: str = DEFAULT_ENTITY_TYPE
    confidence: float = 1.0
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExtractedRelationship:
    """A relationship asserted by the LLM. Endpoints are labels, not ids."""

    source: str
    target: str
    relation_type: str = UNKNOWN_RELATIONSHIP_TYPE
    confidence: float = 1.0
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Complete result from extracting a single row or blob."""

    entities: list[ExtractedEntity]
    relationships: list[ExtractedRelationship]
    raw_response: str = ""
    duration_ms: float = 0.0
    attempts: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.entities and not self.relationships

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [entity_to_dict(e) for e in self.entities],
            "relationships": [relationship_to_dict(r) for r in self.relationships],
        }


def entity_to_dict(entity: ExtractedEntity) -> dict[str, Any]:
    return {
        "label": entity.label,
        "type": entity.entity_type,
        "confidence": entity.confidence,
        "properties": entity.properties,
    }


def relationship_to_dict(rel: ExtractedRelationship) -> dict[str, Any]:
    return {
        "from": rel.source,
        "to": rel.target,
        "type": rel.relation_type,
        "confidence": rel.confidence,
    }


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

MAPPING_EXTRACTION_SYSTEM_PROMPT = """\
You are a precise JSON extractor and an expert in knowledge graphs and \
process mining. Respond with valid JSON only.

### PART 1: USER MAPPING RULES
{rules}

### PART 2: EVENT & TIME RULES (CRITICAL)
1. Identify the event: if the input describes an action (e.g. "Login", \
"Purchase", "Claim"), type that entity as "Event", "Activity" or "Transaction".
2. Timestamps: if you find a date or time, do NOT create a separate entity. \
Add it as a property called "timestamp" on the event entity.
3. Entities: extract the other entities (Customer, Branch, ...) as usual.

### PART 3: FORBIDDEN (STRICT MODE)
- Do NOT use "RELATED_TO" under any circumstances. Use specific verbs \
(e.g. "PERFORMED", "OCCURRED_AT") or the ones defined in the mapping rules.
- If a column matches neither a rule nor an event property, IGNORE IT. \
Do not invent relationships.

### OUTPUT JSON FORMAT
{{
  "entities": [
    {{"type": "Event", "label": "Login", "confidence": 1.0, "properties": {{"timestamp": "2023-10-01T10:00:00Z"}}}},
    {{"type": "Customer", "label": "C001", "confidence": 1.0}}
  ],
  "relationships": [
    {{"from": "C001", "to": "Login", "type": "PERFORMED", "confidence": 1.0}}
  ]
}}
"""

TEXT_EXTRACTION_SYSTEM_PROMPT = """\
You are a precise JSON extractor. Analyze the input as an event log or \
audit trail. Respond with valid JSON only.

### RULES
1. Events: identify specific events and actions and type them "Event".
2. Timestamps: record timestamps as a "timestamp" property of event \
entities. Do not create date entities.
3. Strict verbs: do NOT use "RELATED_TO". Use specific verbs such as \
"WORKS_AT", "LOCATED_IN", "PERFORMED".

### OUTPUT JSON FORMAT
{"entities": [{"type": "...", "label": "...", "confidence": 1.0, "properties": {}}],
 "relationships": [{"from": "...", "to": "...", "type": "...", "confidence": 1.0}]}
"""

TEXT_EXTRACTION_TEMPERATURE = 0.1
TEXT_EXTRACTION_MAX_CHARS = 8000


def render_rules(rules: Sequence[MappingRule]) -> str:
    """One instruction line per approved mapping rule."""
    if not rules:
        return "(no mapping rules; extract what the event rules describe)"
    return "\n".join(
        f'- If you see column "{r.header_column}", create relationship '
        f'"{r.relationship_type}" to entity "{r.target_entity}".'
        for r in rules
    )


# ---------------------------------------------------------------------------
# JSON repair
# ---------------------------------------------------------------------------

_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", flags=re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def _strip_code_fences(text: str) -> str:
    """Prefer the content of a ```json fenced block when one is present."""
    fence = _FENCE.search(text)
    return fence.group(1).strip() if fence else text.strip()


def _first_json_block(text: str) -> str | None:
    """Return the first balanced {...} or [...] span, ignoring brackets in strings.

    If the payload is truncated, returns everything from the opener on so the
    caller can try closing it.
    """
    start = next((i for i, ch in enumerate(text) if ch in "{["), None)
    if start is None:
        return None

    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return text[start:]


def _close_brackets(candidate: str) -> str:
    """Close an unterminated string and any brackets left open, innermost first."""
    closers: list[str] = []
    in_string = escaped = False
    for ch in candidate:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            closers.append("}" if ch == "{" else "]")
        elif ch in "}]" and closers:
            closers.pop()
    return candidate + ('"' if in_string else "") + "".join(reversed(closers))


def repair_llm_json(raw_output: str) -> dict[str, Any] | list[Any] | None:
    """Parse LLM output as JSON, repairing what can be repaired.

    Handles markdown fences, prose before/after the payload, trailing commas,
    and unclosed brackets (best-effort).

    Returns:
        Parsed dict/list or None if repair fails.
    """
    if not raw_output or not raw_output.strip():
        return None

    candidate = _first_json_block(_strip_code_fences(raw_output))
    if candidate is None:
        log.warning("extraction.no_json_found", raw_output=raw_output[:200])
        return None

    for attempt in (candidate, _close_brackets(candidate)):
        try:
            return json.loads(_TRAILING_COMMA.sub(r"\1", attempt))
        except json.JSONDecodeError as e:
            last_error = str(e)

    log.warning("extraction.json_repair_failed", error=last_error)
    return None


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class ExtractionAdapter:
    """Wraps the LLM call behind the `extract(row, rules)` contract.

    Usage:
        adapter = ExtractionAdapter(llm_client)
        result = await adapter.extract("C001,Login,2023-10-01", rules)
    """

    def __init__(
        self,
        llm_client: LLMClient,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        temperature: float = 0.0,
    ) -> None:
        self._llm = llm_client
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._temperature = temperature

    async def extract(self, row_text: str, rules: Sequence[MappingRule]) -> ExtractionResult:
        """Extract entities and relationships from one row under the mapping rules.

        Never raises. LLM failures after all retries and unparseable output
        both produce an empty result.
        """
        system_prompt = MAPPING_EXTRACTION_SYSTEM_PROMPT.format(rules=render_rules(rules))
        return await self._run(system_prompt, row_text, self._temperature)

    async def extract_text(self, text: str) -> ExtractionResult:
        """Extract from an unstructured blob without mapping rules."""
        return await self._run(
            TEXT_EXTRACTION_SYSTEM_PROMPT,
            text[:TEXT_EXTRACTION_MAX_CHARS],
            TEXT_EXTRACTION_TEMPERATURE,
        )

    async def _run(self, system_prompt: str, message: str, temperature: float) -> ExtractionResult:
        log.debug("extraction.start", message_length=len(message))
        start = time.monotonic()

        raw_response, attempts = await self._call_with_retry(system_prompt, message, temperature)
        if raw_response is None:
            return ExtractionResult(
                entities=[], relationships=[], duration_ms=_elapsed_ms(start), attempts=attempts,
            )

        parsed = repair_llm_json(raw_response)
        if not isinstance(parsed, dict):
            log.warning("extraction.parse_failed", raw_response=raw_response[:200])
            return ExtractionResult(
                entities=[], relationships=[], raw_response=raw_response,
                duration_ms=_elapsed_ms(start), attempts=attempts,
            )

        entities = _parse_entities(parsed.get("entities"))
        relationships = _parse_relationships(
            parsed.get("relationships", parsed.get("relations"))
        )

        duration = _elapsed_ms(start)
        log.info(
            "extraction.complete",
            entity_count=len(entities),
            relationship_count=len(relationships),
            attempts=attempts,
            duration_ms=round(duration, 1),
        )
        return ExtractionResult(
            entities=entities,
            relationships=relationships,
            raw_response=raw_response,
            duration_ms=duration,
            attempts=attempts,
        )

    async def _call_with_retry(
        self, system_prompt: str, message: str, temperature: float,
    ) -> tuple[str | None, int]:
        for attempt in range(1, self._max_attempts + 1):
            try:
                raw = await self._llm.complete(system_prompt, message, temperature=temperature)
                return raw, attempt
            except LLMError as e:
                if attempt >= self._max_attempts:
                    log.error("extraction.llm_failed", attempts=attempt, error=str(e))
                    break
                delay = self._base_delay * 2 ** (attempt - 1)
                log.warning(
                    "extraction.llm_retry", attempt=attempt, delay_s=delay, error=str(e),
                )
                await asyncio.sleep(delay)
        return None, self._max_attempts


# ---------------------------------------------------------------------------
# Internal parsers: never raise
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _confidence(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 1.0


def _parse_entities(raw_entities: Any) -> list[ExtractedEntity]:
    """Parse raw entity dicts, skipping ones without a usable label."""
    if not isinstance(raw_entities, list):
        return []
    entities = []
    for item in raw_entities:
        if not isinstance(item, dict):
            continue
        label = _as_text(item.get("label", item.get("name")))
        if not label:
            continue
        props = item.get("properties")
        entities.append(ExtractedEntity(
            label=label,
            entity_type=_as_text(item.get("type")) or DEFAULT_ENTITY_TYPE,
            confidence=_confidence(item.get("confidence", 1.0)),
            properties=props if isinstance(props, dict) else {},
        ))
    return entities


def _parse_relationships(raw_relationships: Any) -> list[ExtractedRelationship]:
    """Parse raw relationship dicts.

    Relationships with empty endpoints are kept; skipping them is the
    reconciler's decision.
    """
    if not isinstance(raw_relationships, list):
        return []
    relationships = []
    for item in raw_relationships:
        if not isinstance(item, dict):
            continue
        props = item.get("properties")
        relationships.append(ExtractedRelationship(
            source=_as_text(item.get("from")),
            target=_as_text(item.get("to")),
            relation_type=_as_text(item.get("type")) or UNKNOWN_RELATIONSHIP_TYPE,
            confidence=_confidence(item.get("confidence", 1.0)),
            properties=props if isinstance(props, dict) else {},
        ))
    return relationships


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000
