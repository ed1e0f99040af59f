import json
import time
from collections import defaultdict

import httpx
import pytest
import pytest_asyncio

from dune_fetch.collectors.dune import DuneConnection
from dune_fetch.queries import build_queries

GRAPH_HOST = "core-hsr.duneanalytics.com"


class FakeDune:
    """In-memory stand-in for dune.com auth and the GraphQL endpoint."""

    def __init__(self):
        self.logins = 0
        self.session_status = 200
        self.failing_sessions = 0
        self.set_refresh_cookie = True
        self.duplicate_refresh_cookie = False
        self.token: str | None = None
        # query_id -> number of ExecuteQuery calls to answer with errors
        self.failing_executions: dict[int, int] = defaultdict(int)
        # query_id -> number of GetResult polls answered with a null result id
        self.pending_polls: dict[int, int] = defaultdict(int)
        # query_id -> error id reported by GetResult for a failed execution
        self.failed_results: dict[int, str] = {}
        self.rows: dict[int, list[dict]] = {}
        self.requests: list[str] = []
        # (operation, query_id, monotonic time) per GraphQL call
        self.calls: list[tuple[str, int | None, float]] = []
        self.upserts: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(f"{request.method} {request.url.host}{request.url.path}")
        if request.url.host == GRAPH_HOST:
            return self._graphql(request)
        return self._auth(request)

    def _auth(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/auth/login":
            return httpx.Response(200, text="<html></html>", headers={"set-cookie": "__cf_bm=abc; Path=/"})
        if path == "/api/auth/csrf":
            return httpx.Response(200, json={"csrf": "csrf-token"})
        if path == "/api/auth":
            body = json.loads(request.content)
            assert body["csrf"] == "csrf-token"
            assert body["action"] == "login"
            if not self.set_refresh_cookie:
                return httpx.Response(200, json={})
            if self.duplicate_refresh_cookie:
                return httpx.Response(200, json={}, headers=[
                    ("set-cookie", "auth-refresh=refresh-token; Path=/"),
                    ("set-cookie", "auth-refresh=other-token; Path=/api"),
                ])
            return httpx.Response(200, json={}, headers={"set-cookie": "auth-refresh=refresh-token; Path=/"})
        if path == "/api/auth/session":
            if self.failing_sessions:
                self.failing_sessions -= 1
                return httpx.Response(500, json={"error": "session"})
            if self.session_status != 200:
                return httpx.Response(self.session_status, json={"error": "session"})
            self.logins += 1
            self.token = f"bearer-{self.logins}"
            return httpx.Response(200, json={"token": self.token})
        return httpx.Response(404)

    def _graphql(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        operation = body["operationName"]
        variables = body["variables"]
        query_id = variables.get("query_id") or variables.get("object", {}).get("id")
        if operation == "FindResultDataByResult":
            query_id = int(variables["result_id"].rsplit("-", 1)[1])
        self.calls.append((operation, query_id, time.monotonic()))

        if request.headers.get("authorization") != f"Bearer {self.token}":
            return httpx.Response(200, json={"errors": [{"message": "invalid token"}]})

        if operation == "UpsertQuery":
            self.upserts.append(variables)
            return httpx.Response(200, json={"data": {"insert_queries_one": {"id": query_id}}})
        if operation == "ExecuteQuery":
            if self.failing_executions[query_id]:
                self.failing_executions[query_id] -= 1
                return httpx.Response(200, json={"errors": [{"message": "execution failed"}]})
            return httpx.Response(200, json={"data": {"execute_query": {"job_id": f"job-{query_id}"}}})
        if operation == "GetResult":
            if query_id in self.failed_results:
                return httpx.Response(200, json={"data": {"get_result_v2": {
                    "job_id": f"job-{query_id}", "result_id": None, "error_id": self.failed_results[query_id],
                }}})
            result_id = None
            if self.pending_polls[query_id]:
                self.pending_polls[query_id] -= 1
            else:
                result_id = f"result-{query_id}"
            return httpx.Response(200, json={"data": {"get_result_v2": {
                "job_id": f"job-{query_id}", "result_id": result_id, "error_id": None,
            }}})
        if operation == "FindResultDataByResult":
            rows = self.rows.get(query_id, [])
            return httpx.Response(200, json={"data": {
                "query_results": [{"id": variables["result_id"], "error": None}],
                "get_result_by_result_id": [{"data": row, "__typename": "get_result_template"} for row in rows],
            }})
        return httpx.Response(200, json={"errors": [{"message": f"unknown operation {operation}"}]})


@pytest.fixture
def fake_dune():
    return FakeDune()


@pytest_asyncio.fixture
async def dune(fake_dune):
    conn = DuneConnection("user", "password123", transport=httpx.MockTransport(fake_dune.handler))
    yield conn
    await conn.aclose()


@pytest.fixture
def queries():
    return build_queries({"mainnet": 15_050_000, "polygon": 30_100_000})
