from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
from typing import Optional
from urllib.parse import unquote

import httpx
import pytest

from agentgraph_ai.agent_core.errors import CheckpointStoreError
from agentgraph_ai.agent_core.repos.kodo import KodoCheckpointStore, KodoClient, KodoRequestError
from agentgraph_ai.agent_core.repos.retry import RetryPolicy
from agentgraph_ai.agent_core.schemas.domain import CheckpointStatus, PendingApproval, SerializedAgentState
from agentgraph_ai.agent_core.schemas.messages import ToolCall, ToolCallFunction, user_message
from agentgraph_ai.core.config import KodoConfig

_NO_WAIT = RetryPolicy(max_retries=2, backoff_initial=0.0, backoff_max=0.0)


def _config() -> KodoConfig:
    return KodoConfig(
        KODO_ACCESS_KEY="ak",
        KODO_SECRET_KEY="sk",
        KODO_BUCKET="bkt",
        KODO_DOWNLOAD_DOMAIN="mock-dl",
        KODO_PREFIX="checkpoints/",
        KODO_UP_HOST="mock-up",
        KODO_RS_HOST="mock-rs",
        KODO_RSF_HOST="mock-rsf",
        KODO_SCHEME="http",
        KODO_UPLOAD_TOKEN_TTL=3600,
        _env_file=None,
    )


def _expected_sign(data: str) -> str:
    return base64.urlsafe_b64encode(hmac.new(b"sk", data.encode("utf-8"), hashlib.sha1).digest()).decode("ascii")


def _multipart_field(body: bytes, name: str) -> bytes:
    match = re.search(rb'name="' + name.encode() + rb'"(?:; filename="[^"]*")?\r\n(?:Content-Type: [^\r]*\r\n)?\r\n(.*?)\r\n--', body, re.S)
    assert match is not None, f"multipart field {name} missing"
    return match.group(1)


class FakeKodo:
    """In-memory Kodo speaking the upload, download, delete and list endpoints."""

    def __init__(self, page_size: int = 1000) -> None:
        self.objects: dict[str, bytes] = {}
        self.page_size = page_size
        self.fail_next: list[int] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next:
            return httpx.Response(self.fail_next.pop(0), text="injected")

        host = request.url.host
        if host == "mock-up":
            key = _multipart_field(request.content, "key").decode()
            token = _multipart_field(request.content, "token").decode()
            assert token.startswith("ak:")
            self.objects[key] = _multipart_field(request.content, "file")
            return httpx.Response(200, json={"key": key})
        if host == "mock-dl":
            key = unquote(request.url.path.lstrip("/"))
            assert "token=ak%3A" in str(request.url) or "token=ak:" in str(request.url)
            if key not in self.objects:
                return httpx.Response(404)
            return httpx.Response(200, content=self.objects[key])
        if host == "mock-rs":
            assert request.headers["Authorization"].startswith("QBox ak:")
            entry = base64.urlsafe_b64decode(request.url.path.rsplit("/", 1)[-1]).decode()
            _, key = entry.split(":", 1)
            if self.objects.pop(key, None) is None:
                return httpx.Response(612, json={"error": "no such file or directory"})
            return httpx.Response(200)
        if host == "mock-rsf":
            prefix = request.url.params["prefix"]
            start = int(request.url.params.get("marker") or 0)
            keys = sorted(k for k in self.objects if k.startswith(prefix))
            page = keys[start : start + self.page_size]
            marker: Optional[str] = str(start + self.page_size) if start + self.page_size < len(keys) else ""
            return httpx.Response(200, json={"items": [{"key": k} for k in page], "marker": marker})
        return httpx.Response(400)


@pytest.fixture
def kodo() -> FakeKodo:
    return FakeKodo()


@pytest.fixture
async def store(kodo: FakeKodo):
    http = httpx.AsyncClient(transport=httpx.MockTransport(kodo.handler))
    yield KodoCheckpointStore.from_config(_config(), http_client=http, retry_policy=_NO_WAIT)
    await http.aclose()


def _state(step: int) -> SerializedAgentState:
    return SerializedAgentState(messages=[user_message("hi")], step_count=step, max_steps=5, done=False)


class TestSigning:
    def test_upload_token_is_cached_until_near_expiry(self) -> None:
        now = [1000.0]
        client = KodoClient(_config(), http_client=httpx.AsyncClient(), clock=lambda: now[0])

        token = client.upload_token()
        access_key, signature, policy = token.split(":")

        assert access_key == "ak"
        assert signature == _expected_sign(policy)
        assert json.loads(base64.urlsafe_b64decode(policy)) == {"scope": "bkt", "deadline": 4600, "insertOnly": 0}
        now[0] = 4000.0
        assert client.upload_token() == token
        now[0] = 4550.0
        assert client.upload_token() != token

    def test_management_auth(self) -> None:
        client = KodoClient(_config(), http_client=httpx.AsyncClient())

        assert client.management_auth("/delete/abc") == f"QBox ak:{_expected_sign('/delete/abc' + chr(10))}"

    def test_download_url_is_signed(self) -> None:
        client = KodoClient(_config(), http_client=httpx.AsyncClient(), clock=lambda: 1000)

        url = client.download_url("checkpoints/t 1.json")

        base = "http://mock-dl/checkpoints%2Ft%201.json?e=4600"
        assert url == f"{base}&token=ak:{_expected_sign(base)}"


class TestCheckpointStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, store: KodoCheckpointStore, kodo: FakeKodo) -> None:
        pending = PendingApproval(
            tool_calls=[ToolCall(id="c1", function=ToolCallFunction(name="rm", arguments="{}"))],
            deferred_tools=["rm"],
            deferred_call_ids=["c1"],
        )

        metadata = await store.save(
            "t1", _state(3), status=CheckpointStatus.pending_approval, pending_approval=pending, custom={"u": 1}
        )
        loaded = await store.load("t1")

        assert metadata.id == "t1"
        assert loaded is not None
        assert loaded.metadata.status == CheckpointStatus.pending_approval
        assert loaded.metadata.pending_approval.deferred_call_ids == ["c1"]
        assert loaded.metadata.custom == {"u": 1}
        assert loaded.state.step_count == 3
        stored = json.loads(kodo.objects["checkpoints/t1.json"])
        assert stored["metadata"]["stepCount"] == 3
        assert stored["state"]["maxSteps"] == 5

    @pytest.mark.asyncio
    async def test_save_overwrites_single_object(self, store: KodoCheckpointStore, kodo: FakeKodo) -> None:
        await store.save("t1", _state(1))
        await store.save("t1", _state(2), status=CheckpointStatus.completed)

        assert list(kodo.objects) == ["checkpoints/t1.json"]
        listed = await store.list("t1")
        assert [(m.id, m.step_count, m.status) for m in listed] == [("t1", 2, CheckpointStatus.completed)]
        assert await store.clear_history("t1") == 0

    @pytest.mark.asyncio
    async def test_missing_thread(self, store: KodoCheckpointStore) -> None:
        assert await store.load("nope") is None
        assert await store.list("nope") == []
        assert await store.delete("nope") is False
        assert await store.clear("nope") == 0

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, store: KodoCheckpointStore) -> None:
        await store.save("t1", _state(1))
        await store.save("t2", _state(1))

        assert await store.delete("t1") is True
        assert await store.clear("t2") == 1
        assert await store.load("t1") is None
        assert await store.load("t2") is None

    @pytest.mark.asyncio
    async def test_list_threads_follows_markers(self, kodo: FakeKodo) -> None:
        kodo.page_size = 1
        async with httpx.AsyncClient(transport=httpx.MockTransport(kodo.handler)) as http:
            store = KodoCheckpointStore.from_config(_config(), http_client=http, retry_policy=_NO_WAIT)
            for thread in ("b", "a", "c"):
                await store.save(thread, _state(1))

            assert await store.list_threads() == ["a", "b", "c"]


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_status_is_retried(self, store: KodoCheckpointStore, kodo: FakeKodo) -> None:
        kodo.fail_next = [503, 429]

        await store.save("t1", _state(1))

        assert len(kodo.requests) == 3
        assert "checkpoints/t1.json" in kodo.objects

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, store: KodoCheckpointStore, kodo: FakeKodo) -> None:
        kodo.fail_next = [401]

        with pytest.raises(KodoRequestError) as exc_info:
            await store.save("t1", _state(1))

        assert exc_info.value.status_code == 401
        assert len(kodo.requests) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, store: KodoCheckpointStore, kodo: FakeKodo) -> None:
        kodo.fail_next = [500, 500, 500]

        with pytest.raises(CheckpointStoreError, match="after 3 attempts"):
            await store.load("t1")

        assert len(kodo.requests) == 3


@pytest.mark.asyncio
async def test_client_closes_only_its_own_http_client() -> None:
    http = httpx.AsyncClient()
    client = KodoClient(_config(), http_client=http)

    await client.aclose()

    assert http.is_closed is False
    await http.aclose()
