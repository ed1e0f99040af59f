"""Dune Analytics collection through the web app's own session.

Dune's query API is driven the way the browser editor drives it:
log in with username/password (cookie + CSRF), trade the session for a
bearer token, then talk GraphQL to save, execute and read back queries.

Login flow:
- GET  /auth/login          sets the initial cookies
- POST /api/auth/csrf       returns {"csrf": ...}
- POST /api/auth            credentials + csrf, sets the auth-refresh cookie
- POST /api/auth/session    returns {"token": ...} (must be 200)
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from dune_fetch.collectors import dune_graphql as gql
from dune_fetch.config import HTTP_TIMEOUT, MAX_POLLS, POLL_INTERVAL_SECONDS
from dune_fetch.queries import QueryDefinition

log = logging.getLogger(__name__)

BASE_URL = "https://dune.com"
GRAPH_URL = "https://core-hsr.duneanalytics.com/v1/graphql"

LOGIN_URL = f"{BASE_URL}/auth/login"
CSRF_URL = f"{BASE_URL}/api/auth/csrf"
AUTH_URL = f"{BASE_URL}/api/auth"
SESSION_URL = f"{BASE_URL}/api/auth/session"

REFRESH_COOKIE = "auth-refresh"

# Dune rejects requests that don't look like they come from its web app
BROWSER_HEADERS = {
    "origin": BASE_URL,
    "sec-ch-ua": '" Not A;Brand";v="99", "Chromium";v="90", "Google Chrome";v="90"',
    "sec-ch-ua-mobile": "?0",
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-site",
    "dnt": "1",
}


class DuneError(Exception):
    """Base class for everything that can go wrong talking to Dune."""


class AuthError(DuneError):
    """The login sequence did not yield a bearer token."""


class RequestError(DuneError):
    """Dune answered a GraphQL operation with an error payload."""

    def __init__(self, operation: str, errors: Any):
        self.operation = operation
        self.errors = errors
        super().__init__(f"Dune API request {operation} failed: {json.dumps(errors, default=str)}")


class PollTimeoutError(RequestError):
    """The result id was still missing after the configured number of polls."""


class TransientPollError(DuneError):
    """The execution has not produced a result yet."""


@dataclass(frozen=True)
class Session:
    csrf: str
    auth_refresh: str
    token: str


def _json_body(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class DuneConnection:
    """One authenticated Dune session and the operations run through it.

    Not safe for concurrent use: Dune ties executions to the account session,
    and a re-login invalidates whatever another caller is doing.
    """

    def __init__(
        self,
        username: str | None,
        password: str | None,
        *,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.username = username
        self.password = password
        self.session: Session | None = None
        self._client = httpx.AsyncClient(
            headers=BROWSER_HEADERS,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    @classmethod
    async def connect(cls, username: str | None, password: str | None, **kwargs: Any) -> "DuneConnection":
        dune = cls(username, password, **kwargs)
        await dune.login()
        return dune

    async def __aenter__(self) -> "DuneConnection":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Session ──

    async def login(self) -> Session:
        """Run the full login sequence, replacing any previous session."""
        if not self.username or not self.password:
            raise AuthError("DUNE_USER and DUNE_PASSWORD must be set")

        self.session = None
        self._client.cookies.clear()
        log.info("Connecting to Dune...")

        try:
            await self._client.get(LOGIN_URL)

            csrf = _json_body(await self._client.post(CSRF_URL)).get("csrf")
            if not csrf:
                raise AuthError("Dune did not return a CSRF token")

            await self._client.post(AUTH_URL, json={
                "action": "login",
                "username": self.username,
                "password": self.password,
                "csrf": csrf,
                "next": BASE_URL,
            })
            try:
                auth_refresh = self._client.cookies.get(REFRESH_COOKIE)
            except httpx.CookieConflict as e:
                raise AuthError(f"Ambiguous {REFRESH_COOKIE} cookie: {e}") from e
            if not auth_refresh:
                raise AuthError(f"Login response did not set the {REFRESH_COOKIE} cookie (bad credentials?)")

            resp = await self._client.post(SESSION_URL)
        except httpx.HTTPError as e:
            raise AuthError(f"Dune login request failed: {type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            raise AuthError(f"Error fetching auth token (HTTP {resp.status_code})")
        token = _json_body(resp).get("token")
        if not token:
            raise AuthError("Session response did not contain a token")

        self.session = Session(csrf=csrf, auth_refresh=auth_refresh, token=token)
        log.info("Connected to Dune")
        return self.session

    # ── GraphQL ──

    async def _graphql(self, operation: str, query: str, variables: dict) -> dict:
        """POST one named operation; raises RequestError if Dune reports errors."""
        if self.session is None:
            raise AuthError(f"Cannot run {operation}: not logged in")

        resp = await self._client.post(
            GRAPH_URL,
            json={"operationName": operation, "variables": variables, "query": query},
            headers={"authorization": f"Bearer {self.session.token}"},
        )
        body = _json_body(resp)
        if body.get("errors"):
            raise RequestError(operation, body["errors"])
        resp.raise_for_status()

        data = body.get("data")
        if not isinstance(data, dict):
            raise RequestError(operation, "response has no data")
        return data

    async def upsert_query(self, definition: QueryDefinition, sql: str) -> dict:
        """Save the SQL and bound parameters under the definition's query id."""
        variables = gql.upsert_variables(
            definition.query_id,
            sql,
            definition.name,
            definition.dataset_id,
            definition.parameter_dicts(),
        )
        return await self._graphql("UpsertQuery", gql.UPSERT_QUERY, variables)

    async def execute_query(self, query_id: int) -> dict:
        # Parameters were stored by the upsert, so none are sent here
        return await self._graphql(
            "ExecuteQuery", gql.EXECUTE_QUERY, {"query_id": query_id, "parameters": []}
        )

    async def submit(self, definition: QueryDefinition, sql: str) -> None:
        """Upsert and execute in one call; the pipeline runs the two steps separately to track state."""
        await self.upsert_query(definition, sql)
        await self.execute_query(definition.query_id)

    async def get_result_id(self, query_id: int, parameters: list[dict]) -> str:
        data = await self._graphql(
            "GetResult", gql.GET_RESULT, {"query_id": query_id, "parameters": parameters}
        )
        result = data.get("get_result_v2") or {}
        if result.get("error_id"):
            raise RequestError("GetResult", {"job_id": result.get("job_id"), "error_id": result["error_id"]})
        result_id = result.get("result_id")
        if not result_id:
            raise TransientPollError(f"No result id yet for query {query_id}")
        return result_id

    async def await_result_id(
        self,
        query_id: int,
        parameters: list[dict],
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_polls: int | None = MAX_POLLS,
    ) -> str:
        """Poll until the execution yields a result id.

        Waits `poll_interval` seconds between polls. Unbounded unless
        `max_polls` is set; any error other than a missing id propagates.
        """
        polls = 0
        while True:
            polls += 1
            try:
                return await self.get_result_id(query_id, parameters)
            except TransientPollError:
                if max_polls is not None and polls >= max_polls:
                    raise PollTimeoutError("GetResult", f"no result id after {polls} polls")
                log.debug(f"Query {query_id} still running (poll {polls}), retry in {poll_interval}s")
                await asyncio.sleep(poll_interval)

    async def fetch_rows(self, result_id: str) -> list[dict]:
        data = await self._graphql(
            "FindResultDataByResult", gql.FIND_RESULT_DATA, {"result_id": result_id}
        )
        records = data.get("get_result_by_result_id")
        if not isinstance(records, list):
            raise RequestError("FindResultDataByResult", "response has no result rows")
        try:
            return [rec["data"] for rec in records]
        except (KeyError, TypeError) as e:
            raise RequestError("FindResultDataByResult", f"malformed result record: {e!r}") from e
