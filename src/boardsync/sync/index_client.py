"""
Search index client: a thin wrapper over the Typesense HTTP API.

Only four endpoints are used::

    GET    /collections/{name}                          describe
    POST   /collections                                 create
    POST   /collections/{name}/documents/import         upsert (JSONL, per-item result)
    DELETE /collections/{name}/documents?filter_by=…    delete by filter

Every failed HTTP call is turned into a :class:`SearchIndexError` with a
single :class:`IndexErrorKind` by :func:`classify_status` /
:func:`classify_transport_error`; no other module looks at status codes.

The client performs no retries.  Upsert and delete report failures in
their result objects instead of raising, so the orchestrator can finish
the cycle and decide whether the watermark may advance.

Examples:
    >>> async with httpx.AsyncClient(base_url=url, headers=headers) as http:
    ...     index = IndexClient(http)
    ...     await index.ensure_collection(suggestion_source().collection_schema())
    ...     result = await index.upsert_batch("suggestions", docs, batch_size=100)
    ...     result.ok
    True
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from boardsync.core.errors import IndexErrorKind, SearchIndexError, error_summary
from boardsync.core.logging import get_logger
from boardsync.core.settings import SyncSettings

logger = get_logger(__name__)

API_KEY_HEADER = "X-TYPESENSE-API-KEY"


def classify_status(status_code: int) -> IndexErrorKind:
    """Map an HTTP status code to an error kind."""
    if status_code == 404:
        return IndexErrorKind.NOT_FOUND
    if status_code in (408, 429) or status_code >= 500:
        return IndexErrorKind.TRANSIENT
    return IndexErrorKind.PERMANENT


def classify_transport_error(exc: httpx.HTTPError) -> IndexErrorKind:
    """Timeouts and connection failures are transient; anything else permanent."""
    if isinstance(exc, httpx.TransportError):
        return IndexErrorKind.TRANSIENT
    return IndexErrorKind.PERMANENT


@dataclass
class FailedDocument:
    """One document the index rejected."""

    id: str
    error: str


@dataclass
class UpsertResult:
    """Outcome of :meth:`IndexClient.upsert_batch`."""

    collection: str
    attempted: int = 0
    succeeded: int = 0
    failed: list[FailedDocument] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def collection_missing(self) -> bool:
        return any(e.get("kind") == IndexErrorKind.NOT_FOUND.value for e in self.errors)

    @property
    def failed_ids(self) -> list[str]:
        return [f.id for f in self.failed]


@dataclass
class DeleteResult:
    """Outcome of :meth:`IndexClient.delete_by_ids`."""

    collection: str
    requested: int = 0
    num_deleted: int = 0
    ok: bool = True
    collection_missing: bool = False
    error: dict[str, Any] | None = None


def build_id_filter(ids: Sequence[str]) -> str:
    """``id:=[`a`,`b`]`` filter; backticks keep ids with commas or spaces intact."""
    quoted = ",".join(f"`{i}`" for i in ids)
    return f"id:=[{quoted}]"


def _chunks(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class IndexClient:
    """Typesense collection/document operations over an ``httpx.AsyncClient``.

    Args:
        http: Client with ``base_url`` and the API key header already set.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    @classmethod
    def create_http_client(cls, settings: SyncSettings) -> httpx.AsyncClient:
        """Build the shared HTTP client from settings."""
        return httpx.AsyncClient(
            base_url=settings.index_base_url,
            headers={API_KEY_HEADER: settings.typesense_api_key or ""},
            timeout=httpx.Timeout(settings.connection_timeout_seconds),
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SearchIndexError(
                f"{method} {url} failed: {exc!s}",
                kind=classify_transport_error(exc),
                cause=exc,
            ).with_context(url=url) from exc

        if response.is_error:
            raise SearchIndexError(
                f"{method} {url} returned {response.status_code}",
                kind=classify_status(response.status_code),
                status_code=response.status_code,
                body=response.text,
            ).with_context(url=url)
        return response

    # -- collections -----------------------------------------------------------

    async def describe_collection(self, name: str) -> dict[str, Any]:
        response = await self._request("GET", f"/collections/{name}")
        return response.json()

    async def create_collection(self, schema: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", "/collections", json=schema)
        return response.json()

    async def ensure_collection(self, schema: dict[str, Any]) -> bool:
        """Create the collection if it does not exist.

        Returns ``True`` when the collection exists afterwards.  Failures
        are logged and reported as ``False``; they never raise.
        """
        name = schema["name"]
        try:
            await self.describe_collection(name)
            logger.info("index.collection.exists", collection=name)
            return True
        except SearchIndexError as exc:
            if not exc.is_not_found:
                logger.error("index.collection.describe_failed", collection=name, **error_summary(exc))
                return False

        logger.info("index.collection.creating", collection=name)
        try:
            await self.create_collection(schema)
        except SearchIndexError as exc:
            logger.error("index.collection.create_failed", collection=name, **error_summary(exc))
            return False
        logger.info("index.collection.created", collection=name)
        return True

    # -- documents -------------------------------------------------------------

    async def upsert_batch(
        self,
        collection: str,
        documents: Sequence[dict[str, Any]],
        batch_size: int = 100,
    ) -> UpsertResult:
        """Upsert *documents* in sub-batches of at most *batch_size*.

        Every document the index did not confirm ends up in
        ``result.failed``: item-level rejections, items of a sub-batch
        whose request failed, and items missing from a short response.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")

        result = UpsertResult(collection=collection, attempted=len(documents))
        for chunk in _chunks(documents, batch_size):
            body = "\n".join(json.dumps(doc, separators=(",", ":")) for doc in chunk)
            try:
                response = await self._request(
                    "POST",
                    f"/collections/{collection}/documents/import",
                    params={"action": "upsert", "batch_size": len(chunk)},
                    content=body.encode("utf-8"),
                    headers={"Content-Type": "text/plain"},
                )
            except SearchIndexError as exc:
                summary = error_summary(exc)
                result.errors.append(summary)
                result.failed.extend(FailedDocument(id=doc["id"], error=exc.message) for doc in chunk)
                logger.error(
                    "index.upsert.request_failed",
                    collection=collection,
                    batch=len(chunk),
                    **summary,
                )
                continue

            self._collect_item_results(result, chunk, response.text)

        if result.failed:
            logger.error(
                "index.upsert.partial_failure",
                collection=collection,
                attempted=result.attempted,
                succeeded=result.succeeded,
                failed_ids=result.failed_ids,
            )
        elif documents:
            logger.info("index.upsert.ok", collection=collection, upserted=result.succeeded)
        return result

    @staticmethod
    def _collect_item_results(result: UpsertResult, chunk: Sequence[dict[str, Any]], text: str) -> None:
        lines = [line for line in text.splitlines() if line.strip()]
        for position, doc in enumerate(chunk):
            if position >= len(lines):
                result.failed.append(FailedDocument(id=doc["id"], error="no result returned"))
                continue
            try:
                item = json.loads(lines[position])
            except json.JSONDecodeError:
                result.failed.append(FailedDocument(id=doc["id"], error="unparseable result"))
                continue
            if item.get("success") is True:
                result.succeeded += 1
            else:
                result.failed.append(
                    FailedDocument(id=doc["id"], error=str(item.get("error", "unknown error")))
                )

    async def delete_by_ids(self, collection: str, ids: Sequence[str]) -> DeleteResult:
        """Delete documents by id with one filtered delete.

        Ids that are not in the index are not an error; a 404 from the
        index counts as success too.
        """
        valid = [i for i in ids if isinstance(i, str) and i]
        result = DeleteResult(collection=collection, requested=len(valid))
        if len(valid) != len(ids):
            logger.warning("index.delete.invalid_ids", collection=collection, dropped=len(ids) - len(valid))
        if not valid:
            return result

        try:
            response = await self._request(
                "DELETE",
                f"/collections/{collection}/documents",
                params={"filter_by": build_id_filter(valid)},
            )
        except SearchIndexError as exc:
            if exc.is_not_found:
                logger.info("index.delete.not_found", collection=collection, requested=len(valid))
                result.collection_missing = True
                return result
            result.ok = False
            result.error = error_summary(exc)
            logger.error("index.delete.failed", collection=collection, requested=len(valid), **result.error)
            return result

        result.num_deleted = int(response.json().get("num_deleted", 0))
        logger.info(
            "index.delete.ok",
            collection=collection,
            requested=len(valid),
            num_deleted=result.num_deleted,
        )
        return result


__all__ = [
    "IndexClient",
    "UpsertResult",
    "DeleteResult",
    "FailedDocument",
    "classify_status",
    "classify_transport_error",
    "build_id_filter",
]
