#!/usr/bin/env python3
"""LoomGraph Demo — ingest a small hospital visit log into a graph.

This is a minimal, self-contained example that demonstrates:
1. Creating a LoomGraph instance (with mock LLM — no API key needed)
2. Asking for a column mapping proposal (analyze)
3. Ingesting the CSV with the approved mapping and remembering it
4. Re-analyzing a file with the same headers (answered from memory)
5. Reading the graph back in strict and permissive mode

Run:
    python examples/ingest_event_log.py

Or with the Anthropic API (requires LOOMGRAPH_LLM_API_KEY):
    python examples/ingest_event_log.py --provider anthropic
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path so we can import loomgraph
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from loomgraph import LoomGraph
from loomgraph.extraction.llm_client import MockLLMClient

VISITS_CSV = """\
patient_id,doctor_id,ward,action,timestamp
P1,D7,W3,Admission,2024-03-01T08:00:00Z
P1,D7,W3,Lab Test,2024-03-01T10:30:00Z
P1,D9,W3,Discharge,2024-03-02T16:00:00Z
"""


# ---------------------------------------------------------------------------
# Mock LLM with realistic responses
# ---------------------------------------------------------------------------

def _script_mock(mock: MockLLMClient) -> None:
    """Canned responses for the visit log, shaped like real model output."""
    mock.set_response("headers:", {"proposals": [
        {"header_column": "doctor_id", "relationship_type": "TREATED_BY",
         "target_entity": "Doctor", "is_new": True, "reason": "a doctor treats the patient"},
        {"header_column": "ward", "relationship_type": "LOCATED_IN",
         "target_entity": "Ward", "is_new": True, "reason": "the visit happens in a ward"},
    ]})

    rows = [
        ("admission", "Admission P1", "D7", "2024-03-01T08:00:00Z"),
        ("lab test", "Lab Test P1", "D7", "2024-03-01T10:30:00Z"),
        ("discharge", "Discharge P1", "D9", "2024-03-02T16:00:00Z"),
    ]
    for key, event, doctor, ts in rows:
        mock.set_response(key, {
            "entities": [
                {"type": "Event", "label": event, "properties": {"timestamp": ts}},
                {"type": "Patient", "label": "P1"},
            ],
            "relationships": [
                {"from": "P1", "to": event, "type": "PERFORMED"},
                {"from": event, "to": doctor, "type": "TREATED_BY"},
                {"from": event, "to": "W3", "type": "LOCATED_IN"},
            ],
        })


# ---------------------------------------------------------------------------
# Demo
# ---------------------------------------------------------------------------

async def run_demo(provider: str) -> None:
    print("\n━━━ LoomGraph demo: hospital visit log ━━━\n")

    async with LoomGraph(llm_provider=provider, log_level="WARNING") as lg:
        if isinstance(lg.llm_client, MockLLMClient):
            _script_mock(lg.llm_client)

        # 1. Propose a mapping
        analysis = await lg.analyze("visits.csv", VISITS_CSV)
        print(f"  Mapping source: {analysis['source']}")
        for p in analysis["proposals"]:
            print(f"    {p['header_column']} -> {p['relationship_type']} ({p['target_entity']})")

        # 2. Ingest with the approved mapping
        result = await lg.ingest({
            "textContent": VISITS_CSV,
            "fileName": "visits.csv",
            "approvedMapping": analysis["proposals"],
            "saveToMemory": True,
        })
        stats = result["stats"]
        print(
            f"\n  Ingested {stats['rowsProcessed']} rows: "
            f"{stats['entitiesInserted']} entity upserts, {stats['relsInserted']} relationships, "
            f"{stats['implicitNodesCreated']} self-healed nodes"
        )

        # 3. Same headers, different order: answered from memory
        again = await lg.analyze("visits-april.csv", "ward,patient_id,action,doctor_id,timestamp\n")
        print(f"  Second file mapping source: {again['source']}")

        # 4. Read back
        snapshot = await lg.read_graph(result["documentId"])
        print(f"\n  Graph: {len(snapshot.entities)} entities, {len(snapshot.relationships)} relationships")
        for rel in snapshot.relationships:
            src = snapshot.entity(rel.from_id)
            tgt = snapshot.entity(rel.to_id)
            print(f"    {src.label} --{rel.type}--> {tgt.label}")

        nearby = snapshot.neighbors("entity:w3", depth=1)
        print(f"\n  Visits in ward W3: {', '.join(e.label for e in nearby)}")

    print("\n✨ Demo complete!\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="LoomGraph demo")
    parser.add_argument("--provider", default="mock", choices=["mock", "anthropic", "openai"])
    args = parser.parse_args()
    asyncio.run(run_demo(args.provider))


if __name__ == "__main__":
    main()
