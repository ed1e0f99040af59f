"""Run the token-holder queries against Dune, one after another.

Queries share one logged-in session, so they never overlap: a second
execution or a re-login would invalidate the first. Each query goes
through

    PENDING -> SUBMITTED -> EXECUTING -> POLLING_RESULT -> FETCHING -> DONE

and any step can fail. A failed attempt logs back in and starts over from
PENDING until the retry budget runs out, at which point the whole fetch
fails. There is no partial result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import httpx

from dune_fetch.collectors.dune import DuneConnection, DuneError
from dune_fetch.config import (
    DUNE_PASSWORD,
    DUNE_USER,
    MAX_POLLS,
    MAX_RETRIES,
    POLL_INTERVAL_SECONDS,
    QUERY_PAUSE_SECONDS,
    SQL_DIR,
)
from dune_fetch.queries import QueryDefinition, build_queries, read_sql

log = logging.getLogger(__name__)


class QueryState(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    EXECUTING = "executing"
    POLLING_RESULT = "polling_result"
    FETCHING = "fetching"
    DONE = "done"
    FAILED = "failed"


class RetriesExhaustedError(DuneError):
    """Every attempt for one query failed; the last error is the __cause__."""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"{key}: giving up after {attempts} failed attempts")


@dataclass
class QueryRun:
    """Retry bookkeeping for a single query."""

    key: str
    definition: QueryDefinition
    max_retries: int = MAX_RETRIES
    state: QueryState = QueryState.PENDING
    attempts: int = 0
    last_error: Exception | None = None
    history: list[QueryState] = field(default_factory=lambda: [QueryState.PENDING])

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def needs_login(self) -> bool:
        """A previous attempt failed, so the session may be gone."""
        return self.last_error is not None

    def transition(self, state: QueryState) -> None:
        log.debug(f"{self.definition.name}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, error: Exception) -> QueryState:
        """Record a failed attempt; returns PENDING to retry or FAILED to stop."""
        self.last_error = error
        self.transition(QueryState.FAILED)
        if self.attempts >= self.max_attempts:
            return QueryState.FAILED
        self.transition(QueryState.PENDING)
        return QueryState.PENDING


async def _attempt(
    dune: DuneConnection,
    run: QueryRun,
    sql: str,
    poll_interval: float,
    max_polls: int | None,
) -> list[dict]:
    definition = run.definition
    if run.needs_login:
        await dune.login()

    run.transition(QueryState.SUBMITTED)
    log.info(f"{definition.name}: initiating new query")
    await dune.upsert_query(definition, sql)

    run.transition(QueryState.EXECUTING)
    await dune.execute_query(definition.query_id)

    run.transition(QueryState.POLLING_RESULT)
    result_id = await dune.await_result_id(
        definition.query_id,
        definition.parameter_dicts(),
        poll_interval=poll_interval,
        max_polls=max_polls,
    )

    run.transition(QueryState.FETCHING)
    return await dune.fetch_rows(result_id)


async def run_query(
    dune: DuneConnection,
    key: str,
    definition: QueryDefinition,
    sql: str,
    *,
    max_retries: int = MAX_RETRIES,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    max_polls: int | None = MAX_POLLS,
) -> list[dict]:
    """Save, execute and read back one query, retrying with a fresh login."""
    run = QueryRun(key=key, definition=definition, max_retries=max_retries)
    while True:
        run.attempts += 1
        try:
            rows = await _attempt(dune, run, sql, poll_interval, max_polls)
        except (DuneError, httpx.HTTPError) as e:
            log.warning(f"{definition.name}: attempt {run.attempts}/{run.max_attempts} failed: {e}")
            if run.fail(e) is QueryState.FAILED:
                log.error(f"{definition.name}: all {run.attempts} attempts failed")
                raise RetriesExhaustedError(key, run.attempts) from e
            log.info(f"{definition.name}: execution fetching failed, logging in again and retrying")
            continue

        run.transition(QueryState.DONE)
        log.info(f"{definition.name}: done ({len(rows)} records)")
        return rows


async def fetch_dune_data(
    queries: dict[str, QueryDefinition] | None = None,
    *,
    dune: DuneConnection | None = None,
    username: str | None = None,
    password: str | None = None,
    max_retries: int = MAX_RETRIES,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    max_polls: int | None = MAX_POLLS,
    query_pause: float = QUERY_PAUSE_SECONDS,
    sql_dir: Path = SQL_DIR,
) -> dict[str, list[dict]]:
    """Fetch every query's rows, keyed like `queries` (default: build_queries()).

    Logs in once up front. A connection passed in is left open; one created
    here is closed before returning.
    """
    if queries is None:
        queries = build_queries()

    owns_connection = dune is None
    if dune is None:
        dune = DuneConnection(username or DUNE_USER, password or DUNE_PASSWORD)

    try:
        await dune.login()
        results: dict[str, list[dict]] = {}
        for key, definition in queries.items():
            sql = read_sql(definition, sql_dir)
            results[key] = await run_query(
                dune,
                key,
                definition,
                sql,
                max_retries=max_retries,
                poll_interval=poll_interval,
                max_polls=max_polls,
            )
            # Back-to-back executions trip Dune's rate limiting
            await asyncio.sleep(query_pause)
    finally:
        if owns_connection:
            await dune.aclose()

    log.info(f"Dune fetch complete: {', '.join(f'{k}={len(v)}' for k, v in results.items())}")
    return results
