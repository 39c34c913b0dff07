from __future__ import annotations

from fastapi import FastAPI, HTTPException, Response

from chain_checks import __version__
from chain_checks.alert_cache import AlertCache
from chain_checks.store import KeyNotFound, StoreError


def create_app(cache: AlertCache) -> FastAPI:
    app = FastAPI(title="Chain Checks", version=__version__)
    app.state.cache = cache

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/executions/latest")
    async def latest_execution() -> Response:
        # No completed cycle yet is a server error, not an empty success.
        try:
            raw = await app.state.cache.latest_summary_raw()
        except KeyNotFound:
            raise HTTPException(status_code=500, detail="no_execution_recorded")
        except StoreError as exc:
            raise HTTPException(status_code=500, detail="store_unavailable") from exc
        return Response(content=raw, media_type="application/json")

    return app
