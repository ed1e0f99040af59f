"""Dune holder fetcher — FastAPI application."""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException

from dune_fetch.collectors.dune import DuneError
from dune_fetch.config import CACHE_TTL_SECONDS
from dune_fetch.pipeline import fetch_dune_data

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(title="Dune Holder Fetcher", version="1.0.0")

_cache: dict = {}
_cache_time: datetime | None = None
# One Dune session at a time: a second login would kick out the running one
_lock = asyncio.Lock()


async def run_pipeline(force: bool = False) -> dict:
    global _cache, _cache_time

    async with _lock:
        now = datetime.now(timezone.utc)
        if not force and _cache and _cache_time and (now - _cache_time).total_seconds() < CACHE_TTL_SECONDS:
            return _cache

        log.info("Starting Dune fetch...")
        try:
            dune = await fetch_dune_data()
        except (DuneError, ValueError, OSError) as e:
            log.error(f"Dune fetch failed: {e}")
            raise HTTPException(status_code=502, detail=str(e)) from e

        _cache = {
            "generated_at": now.isoformat(),
            "counts": {key: len(rows) for key, rows in dune.items()},
            "dune": dune,
        }
        _cache_time = now
        return _cache


@app.get("/api/dune")
async def api_dune():
    return await run_pipeline()


@app.post("/api/refresh")
async def api_refresh():
    data = await run_pipeline(force=True)
    return {"status": "refreshed", "generated_at": data["generated_at"], "counts": data["counts"]}


@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0", "ts": datetime.now(timezone.utc).isoformat()}
