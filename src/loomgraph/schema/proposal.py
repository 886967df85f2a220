"""Schema proposal — asks the LLM to map a file's headers to relationship types.

The learned vocabulary is included in the prompt as the existing knowledge
base, so known types are reused and only genuinely new ones come back with
`is_new=True`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from loomgraph.extraction.llm_client import LLMClient
from loomgraph.extraction.pipeline import repair_llm_json
from loomgraph.graph.models import MappingRule, RelationshipDef
from loomgraph.logging import get_logger
from loomgraph.schema.vocabulary import VocabularyLearner

log = get_logger("proposal")

PROPOSAL_TEMPERATURE = 0.1

PROPOSAL_SYSTEM_PROMPT = """\
You are a data architect. Analyze the CSV headers and map them to graph \
relationships. Respond with valid JSON only.

### EXISTING KNOWLEDGE BASE (prioritize these)
{knowledge}

### TASK
- If a header matches an existing relationship type, use it.
- If a header implies a NEW relationship (e.g. "doctor_id" implies \
"TREATED_BY"), propose it and set "is_new": true.
- Never propose "RELATED_TO".

### OUTPUT JSON
{{
  "proposals": [
    {{
      "header_column": "ColumnName",
      "relationship_type": "EXISTING_OR_NEW_TYPE",
      "target_entity": "EntityName",
      "is_new": false,
      "reason": "Why?"
    }}
  ]
}}
"""


@dataclass(frozen=True, slots=True)
class MappingProposal:
    header_column: str
    relationship_type: str
    target_entity: str
    is_new: bool = False
    reason: str = ""

    def to_rule(self) -> MappingRule:
        return MappingRule(self.header_column, self.relationship_type, self.target_entity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "header_column": self.header_column,
            "relationship_type": self.relationship_type,
            "target_entity": self.target_entity,
            "is_new": self.is_new,
            "reason": self.reason,
        }


def render_knowledge(defs: Sequence[RelationshipDef]) -> str:
    if not defs:
        return "No existing rules."
    return "\n".join(f'"{d.type}" ({d.description})' for d in defs)


class SchemaProposer:
    def __init__(self, llm_client: LLMClient, vocabulary: VocabularyLearner) -> None:
        self._llm = llm_client
        self._vocabulary = vocabulary

    async def propose(self, file_name: str, headers: Sequence[str]) -> list[MappingProposal]:
        """Propose one mapping per header the LLM considers relational.

        Raises:
            LLMError: If the LLM call fails.
        """
        known = await self._vocabulary.known_types()
        system_prompt = PROPOSAL_SYSTEM_PROMPT.format(knowledge=render_knowledge(known))
        raw = await self._llm.complete(
            system_prompt,
            f"File: {file_name}, Headers: {','.join(headers)}",
            temperature=PROPOSAL_TEMPERATURE,
        )
        parsed = repair_llm_json(raw)
        proposals = _parse_proposals(parsed.get("proposals") if isinstance(parsed, dict) else None)
        log.info(
            "proposal.complete",
            file_name=file_name,
            headers=len(headers),
            proposals=len(proposals),
            new_types=sum(p.is_new for p in proposals),
        )
        return proposals


def _parse_proposals(raw: Any) -> list[MappingProposal]:
    if not isinstance(raw, list):
        return []
    proposals = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        header = item.get("header_column")
        rel_type = item.get("relationship_type")
        if not isinstance(header, str) or not isinstance(rel_type, str) or not rel_type:
            continue
        proposals.append(MappingProposal(
            header_column=header,
            relationship_type=rel_type,
            target_entity=str(item.get("target_entity") or ""),
            is_new=bool(item.get("is_new", False)),
            reason=str(item.get("reason") or ""),
        ))
    return proposals
