"""
Shared fixtures: an in-memory CRM served through httpx.MockTransport and a
sleep stand-in that records backoff delays instead of waiting.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
import pytest

from owner_sync.coreutils.config import SyncConfig
from owner_sync.coreutils.request import ResilientTransport, new_client
from owner_sync.extract.crm_api import CrmApiClient

BASE_URL = "http://crm.test"
OWNER = "hubspot_owner_id"


def deal(deal_id: str, createdate: Optional[str], owner: Optional[str] = "old") -> dict:
    """A deal as returned by the search endpoint"""
    return {
        "id": deal_id,
        "properties": {OWNER: owner, "createdate": createdate},
        "archived": False,
    }


def history(*entries: Tuple[Optional[str], Optional[str]]) -> List[dict]:
    """Owner history entries as (value, timestamp) pairs"""
    return [
        {"value": value, "timestamp": timestamp, "sourceType": "CRM_UI"}
        for value, timestamp in entries
    ]


class FakeCrm:
    """Just enough of the CRM v3 API for the pipeline"""

    def __init__(self):
        self.pages: List[List[dict]] = []
        self.associations: Dict[str, Optional[str]] = {}
        self.histories: Dict[str, List[dict]] = {}
        self.failures: Dict[Tuple[str, str], List[Any]] = {}
        self.batch_update_rejects: Set[str] = set()
        self.requests: List[httpx.Request] = []
        self.updated: Dict[str, Optional[str]] = {}

    def add_page(self, *deals: dict) -> None:
        self.pages.append(list(deals))

    def fail(self, method: str, path: str, *responses: Any) -> None:
        """Queue statuses, responses or exceptions to return before normal routing"""
        self.failures.setdefault((method, path), []).extend(responses)

    def calls(self, method: str, path_part: str = "") -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and path_part in r.url.path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        queued = self.failures.get((request.method, request.url.path))
        if queued:
            failure = queued.pop(0)
            if isinstance(failure, Exception):
                raise failure
            if isinstance(failure, httpx.Response):
                return failure
            return httpx.Response(failure, json={"message": "injected failure"})

        return self._route(request)

    def _route(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")
        method = request.method
        tail = parts[4:]

        if method == "POST" and tail == ["search"]:
            body = json.loads(request.content)
            index = int(body.get("after") or 0)
            if index >= len(self.pages):
                return httpx.Response(200, json={"total": 0, "results": []})
            payload: Dict[str, Any] = {"total": 0, "results": self.pages[index]}
            if index + 1 < len(self.pages):
                payload["paging"] = {"next": {"after": str(index + 1)}}
            return httpx.Response(200, json=payload)

        if method == "GET" and len(tail) == 3 and tail[1] == "associations":
            company_id = self.associations.get(tail[0])
            results = (
                [] if company_id is None else [{"id": company_id, "type": "deal_to_company"}]
            )
            return httpx.Response(200, json={"results": results})

        if method == "POST" and tail == ["batch", "read"]:
            body = json.loads(request.content)
            company_id = body["inputs"][0]["id"]
            if company_id not in self.histories:
                return httpx.Response(200, json={"status": "COMPLETE", "results": []})
            return httpx.Response(
                200,
                json={
                    "status": "COMPLETE",
                    "results": [
                        {
                            "id": company_id,
                            "properties": {},
                            "propertiesWithHistory": {
                                OWNER: self.histories[company_id]
                            },
                        }
                    ],
                },
            )

        if method == "PATCH" and len(tail) == 1:
            body = json.loads(request.content)
            self.updated[tail[0]] = body["properties"][OWNER]
            return httpx.Response(200, json={"id": tail[0], "properties": body["properties"]})

        if method == "POST" and tail == ["batch", "update"]:
            body = json.loads(request.content)
            results, errors = [], []
            for item in body["inputs"]:
                if item["id"] in self.batch_update_rejects:
                    errors.append({"message": f"Object {item['id']} not found"})
                    continue
                self.updated[item["id"]] = item["properties"][OWNER]
                results.append({"id": item["id"]})
            status = 207 if errors else 200
            return httpx.Response(status, json={"results": results, "errors": errors})

        return httpx.Response(404, json={"message": "not found"})


class RecordingSleep:
    """Async sleep replacement that returns immediately"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_crm() -> FakeCrm:
    return FakeCrm()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(
        access_token="test-token",
        base_url=BASE_URL,
        max_retries=3,
        jitter=False,
        created_from="2021-01-04T00:00:00Z",
        created_to="2021-01-15T23:59:59Z",
        pipeline_id="8214425",
    )


@pytest.fixture
def open_api(fake_crm, config, sleeper):
    """Factory for a CrmApiClient wired to the fake CRM"""

    @asynccontextmanager
    async def _open(cfg: Optional[SyncConfig] = None):
        cfg = cfg or config
        async with new_client(cfg, transport=httpx.MockTransport(fake_crm.handler)) as client:
            transport = ResilientTransport.from_config(cfg, client, sleep=sleeper)
            yield CrmApiClient(transport, cfg)

    return _open
