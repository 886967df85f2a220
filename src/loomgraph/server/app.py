"""FastAPI server — ingestion, schema analysis and graph read endpoints."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from loomgraph.api import LoomGraph, error_payload
from loomgraph.errors import LoomGraphError
from loomgraph.logging import get_logger

log = get_logger("server")

_STATUS_BY_KIND = {
    "input_validation": 400,
    "store_unavailable": 500,
    "llm": 500,
    "internal": 500,
}


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _respond(payload: dict[str, Any]) -> JSONResponse:
    if payload.get("success", True):
        return JSONResponse(payload)
    return JSONResponse(payload, status_code=_STATUS_BY_KIND.get(payload.get("errorKind"), 500))


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(lg: LoomGraph) -> FastAPI:
    """Create the FastAPI app wired to a LoomGraph instance.

    The app's lifespan starts and stops `lg`; starting an already started
    instance is a no-op, so callers may also manage it themselves.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await lg.start()
        log.info("server.started")
        yield
        await lg.stop()

    app = FastAPI(title="LoomGraph", lifespan=lifespan)

    # --- Routes ---

    @app.post("/api/process")
    async def process(request: Request):
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"success": False, "error": "Invalid JSON"}, status_code=400)
        timeout = lg.config.ingest_timeout_seconds
        try:
            payload = await asyncio.wait_for(lg.ingest(body), timeout=timeout)
        except asyncio.TimeoutError:
            log.error("server.ingest_timeout", timeout_seconds=timeout)
            return JSONResponse(
                {"success": False, "error": f"Ingestion exceeded {timeout}s"},
                status_code=504,
            )
        return _respond(payload)

    @app.post("/api/analyze")
    async def analyze(request: Request):
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"success": False, "error": "Invalid JSON"}, status_code=400)
        payload = await lg.analyze(
            str(body.get("fileName") or "input.txt"),
            str(body.get("textContent") or ""),
        )
        return _respond(payload)

    @app.get("/api/graph")
    async def get_graph(document_id: str | None = Query(default=None, alias="documentId")):
        try:
            snapshot = await lg.read_graph(document_id)
        except LoomGraphError as e:
            log.error("server.read_failed", error=str(e))
            return _respond(error_payload(e))
        return snapshot.to_dict()

    @app.get("/api/health")
    async def health():
        store_ok = await lg.store.health_check()
        return JSONResponse(
            {"status": "ok" if store_ok else "degraded", "store": store_ok},
            status_code=200 if store_ok else 503,
        )

    return app
