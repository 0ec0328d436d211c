from __future__ import annotations

"""Qiniu Kodo object-storage checkpoint store.

Each thread owns exactly one object, ``<prefix><thread_id>.json``, holding
the camelCase JSON of its latest ``Checkpoint``. Saving overwrites it, so the
checkpoint id equals the thread id and ``list`` returns at most one entry.

Requests are signed with HMAC-SHA1 the way Kodo expects:

- uploads carry a bucket-scoped upload token (cached until shortly before it
  expires),
- downloads use a signed private URL (``?e=<deadline>&token=<ak>:<sign>``),
- management calls (delete, list) send ``Authorization: QBox <ak>:<sign>``.

A 404 on download is a missing checkpoint (``None``); status 612 on delete
means the object did not exist (``False``). Transport errors, 429 and 5xx
responses are retried with bounded backoff.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx

from ...core.config import KodoConfig
from ..errors import CheckpointStoreError
from ..schemas.domain import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointStatus,
    PendingApproval,
    SerializedAgentState,
)
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

KODO_NOT_FOUND = 612


class KodoRequestError(CheckpointStoreError):
    """Kodo answered with an unexpected HTTP status."""

    def __init__(self, operation: str, status_code: int, body: str = "") -> None:
        super().__init__(f"Kodo {operation} failed: {status_code} {body}".strip())
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


def is_transient_http_error(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    return isinstance(error, KodoRequestError) and error.transient


def urlsafe_b64(data: bytes | str) -> str:
    raw = data.encode("utf-8") if isinstance(data, str) else data
    return base64.urlsafe_b64encode(raw).decode("ascii")


class KodoClient:
    """Minimal signed Kodo API client on ``httpx.AsyncClient``."""

    def __init__(
        self,
        config: KodoConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Any = time.time,
    ) -> None:
        self._cfg = config
        self._http = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_http = http_client is None
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self._cached_token: Optional[tuple[str, float]] = None

    def _url(self, host: str, path: str) -> str:
        return f"{self._cfg.scheme}://{host}{path}"

    def _sign(self, data: str) -> str:
        digest = hmac.new(self._cfg.secret_key.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
        return urlsafe_b64(digest)

    def upload_token(self) -> str:
        now = self._clock()
        if self._cached_token is not None and self._cached_token[1] > now + 60:
            return self._cached_token[0]
        deadline = int(now) + self._cfg.upload_token_ttl
        policy = urlsafe_b64(json.dumps({"scope": self._cfg.bucket, "deadline": deadline, "insertOnly": 0}))
        token = f"{self._cfg.access_key}:{self._sign(policy)}:{policy}"
        self._cached_token = (token, float(deadline))
        return token

    def management_auth(self, path: str, body: str = "") -> str:
        signature = self._sign(path + "\n" + body)
        return f"QBox {self._cfg.access_key}:{signature}"

    def download_url(self, key: str) -> str:
        domain = self._cfg.download_domain or f"{self._cfg.bucket}.kodo.qiniuio.com"
        deadline = int(self._clock()) + self._cfg.upload_token_ttl
        base_url = f"{self._cfg.scheme}://{domain}/{quote(key, safe='')}?e={deadline}"
        return f"{base_url}&token={self._cfg.access_key}:{self._sign(base_url)}"

    async def _retrying(self, description: str, operation):  # type: ignore[no-untyped-def]
        return await with_retry(
            operation, is_transient=is_transient_http_error, policy=self._retry, description=description
        )

    async def upload(self, key: str, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")

        async def _op() -> None:
            resp = await self._http.post(
                self._url(self._cfg.up_host, "/"),
                data={"token": self.upload_token(), "key": key},
                files={"file": (key, body, "application/json")},
            )
            if resp.status_code != 200:
                raise KodoRequestError("upload", resp.status_code, resp.text)

        await self._retrying(f"upload {key}", _op)

    async def download(self, key: str) -> Optional[Dict[str, Any]]:
        async def _op() -> Optional[Dict[str, Any]]:
            resp = await self._http.get(self.download_url(key))
            if resp.status_code == 404:
                return None
            if resp.status_code != 200:
                raise KodoRequestError("download", resp.status_code)
            return resp.json()

        return await self._retrying(f"download {key}", _op)

    async def delete(self, key: str) -> bool:
        path = f"/delete/{urlsafe_b64(f'{self._cfg.bucket}:{key}')}"

        async def _op() -> bool:
            resp = await self._http.post(
                self._url(self._cfg.rs_host, path),
                headers={
                    "Authorization": self.management_auth(path),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
            )
            if resp.status_code == KODO_NOT_FOUND:
                return False
            if resp.status_code != 200:
                raise KodoRequestError("delete", resp.status_code, resp.text)
            return True

        return await self._retrying(f"delete {key}", _op)

    async def list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        marker: Optional[str] = None
        while True:
            params = {"bucket": self._cfg.bucket, "prefix": prefix, "limit": "1000"}
            if marker:
                params["marker"] = marker
            path = f"/list?{urlencode(params)}"

            async def _op(path: str = path) -> Dict[str, Any]:
                resp = await self._http.get(
                    self._url(self._cfg.rsf_host, path), headers={"Authorization": self.management_auth(path)}
                )
                if resp.status_code != 200:
                    raise KodoRequestError("list", resp.status_code, resp.text)
                return resp.json()

            page = await self._retrying(f"list {prefix}", _op)
            keys.extend(item["key"] for item in page.get("items") or [])
            marker = page.get("marker") or None
            if not marker:
                return keys

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class KodoCheckpointStore:
    """``CheckpointStore`` keeping the latest checkpoint of each thread in Kodo."""

    def __init__(self, client: KodoClient, *, prefix: str = "checkpoints/") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_config(
        cls,
        config: KodoConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> "KodoCheckpointStore":
        return cls(KodoClient(config, http_client=http_client, retry_policy=retry_policy), prefix=config.prefix)

    def key_for(self, thread_id: str) -> str:
        return f"{self._prefix}{thread_id}.json"

    async def save(
        self,
        thread_id: str,
        state: SerializedAgentState,
        *,
        status: CheckpointStatus = CheckpointStatus.active,
        pending_approval: Optional[PendingApproval] = None,
        custom: Optional[Dict[str, Any]] = None,
    ) -> CheckpointMetadata:
        metadata = CheckpointMetadata(
            id=thread_id,
            thread_id=thread_id,
            step_count=state.step_count,
            status=status,
            pending_approval=pending_approval,
            custom=custom,
        )
        checkpoint = Checkpoint(metadata=metadata, state=state)
        await self._client.upload(self.key_for(thread_id), checkpoint.model_dump(mode="json", by_alias=True))
        logger.debug("Saved checkpoint of thread %s (status=%s)", thread_id, status.value)
        return metadata

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        payload = await self._client.download(self.key_for(thread_id))
        if payload is None:
            return None
        return Checkpoint.model_validate(payload)

    async def list(self, thread_id: str) -> list[CheckpointMetadata]:
        checkpoint = await self.load(thread_id)
        return [checkpoint.metadata] if checkpoint is not None else []

    async def delete(self, checkpoint_id: str) -> bool:
        """Delete a checkpoint; ids equal thread ids in this backend."""
        return await self._client.delete(self.key_for(checkpoint_id))

    async def clear(self, thread_id: str) -> int:
        return 1 if await self._client.delete(self.key_for(thread_id)) else 0

    async def clear_history(self, thread_id: str, keep_id: Optional[str] = None) -> int:
        """Only the latest checkpoint is ever stored, so there is no history to clear."""
        return 0

    async def list_threads(self) -> list[str]:
        """Thread ids that currently have a checkpoint object."""
        keys = await self._client.list_keys(self._prefix)
        return [k[len(self._prefix) : -len(".json")] for k in keys if k.endswith(".json")]

    async def aclose(self) -> None:
        await self._client.aclose()
