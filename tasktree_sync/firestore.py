"""Cloud Firestore REST client for project, group and resource documents."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"
PROJECTS = "projects"
PROJECT_GROUPS = "projectGroups"
RESOURCES = "resources"

# Firestore rejects commits with more operations than this.
MAX_BATCH_WRITES = 500

RE_SIMPLE_FIELD = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class FirestoreError(RuntimeError):
    """The document store answered with an error payload."""


@dataclass
class DocumentWrite:
    """One operation in a batch commit.

    ``fields`` set with ``merge`` only overwrites the given keys; without
    ``merge`` the whole document is replaced. ``delete`` removes it.
    """

    collection: str
    doc_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    merge: bool = True
    delete: bool = False


# ------------------------------------------------------------------
# Value codec
# ------------------------------------------------------------------


def encode_value(value: Any) -> dict:
    """Encode a Python value as a Firestore ``Value`` object."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot encode {type(value).__name__} for Firestore")


def encode_fields(data: dict[str, Any]) -> dict:
    return {key: encode_value(v) for key, v in data.items()}


def decode_value(value: dict) -> Any:
    """Decode a Firestore ``Value`` object into plain Python data."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return value["booleanValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    for key in ("stringValue", "timestampValue", "referenceValue", "bytesValue"):
        if key in value:
            return value[key]
    if "geoPointValue" in value:
        return dict(value["geoPointValue"])
    logger.debug("Unknown Firestore value type: %r", value)
    return None


def decode_fields(fields: dict) -> dict[str, Any]:
    return {key: decode_value(v) for key, v in fields.items()}


def field_path(key: str) -> str:
    """Quote a top-level key for use in an update mask."""
    if RE_SIMPLE_FIELD.match(key):
        return key
    escaped = key.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------


class FirestoreClient:
    """Async client for one user's documents in Cloud Firestore.

    Documents live under ``users/{user_id}/{collection}/{doc_id}``.
    """

    def __init__(
        self,
        token: str,
        firebase_project: str,
        user_id: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token
        self.firebase_project = firebase_project
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def database_path(self) -> str:
        return f"projects/{self.firebase_project}/databases/(default)/documents"

    def document_name(self, collection: str, doc_id: str) -> str:
        """Full resource name of a document, as used in commit requests."""
        return f"{self.database_path}/users/{self.user_id}/{collection}/{doc_id}"

    def _url(self, path: str) -> str:
        return f"{FIRESTORE_URL}/{path}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Send a request and return the decoded JSON body."""
        resp = await self._client.request(method, self._url(path), **kwargs)
        if resp.is_error:
            raise FirestoreError(_error_message(resp))
        if not resp.content:
            return {}
        return resp.json()

    # ------------------------------------------------------------------
    # Read documents
    # ------------------------------------------------------------------

    async def list_documents(self, collection: str) -> list[tuple[str, dict]]:
        """List all documents in a collection (paginated) as ``(id, data)``."""
        parent = f"{self.database_path}/users/{self.user_id}/{collection}"
        docs: list[tuple[str, dict]] = []
        page_token: str | None = None

        while True:
            params: dict = {"pageSize": 300}
            if page_token:
                params["pageToken"] = page_token
            body = await self._request("GET", parent, params=params)
            for doc in body.get("documents", []):
                doc_id = doc["name"].rsplit("/", 1)[-1]
                docs.append((doc_id, decode_fields(doc.get("fields", {}))))
            page_token = body.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Listed %d document(s) in %s", len(docs), collection)
        return docs

    async def watch(
        self, collection: str, interval: float = 5.0
    ) -> AsyncIterator[list[tuple[str, dict]]]:
        """Yield the collection's documents each time they change.

        The first snapshot is always yielded. Failed polls are logged and
        retried after ``interval`` seconds.
        """
        last: list[tuple[str, dict]] | None = None
        while True:
            try:
                docs = await self.list_documents(collection)
            except (httpx.HTTPError, FirestoreError) as e:
                logger.error("Error fetching %s: %s", collection, e)
            else:
                if docs != last:
                    last = docs
                    yield docs
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def write(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """Create or overwrite a document.

        With ``merge`` only the given top-level fields are replaced, and an
        empty ``fields`` sends nothing. Without ``merge`` the whole document
        is replaced.
        """
        params = None
        if merge:
            if not fields:
                logger.debug("Empty merge write to %s/%s skipped", collection, doc_id)
                return
            params = [("updateMask.fieldPaths", field_path(k)) for k in fields]
        await self._request(
            "PATCH",
            self.document_name(collection, doc_id),
            params=params,
            json={"fields": encode_fields(fields)},
        )

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        await self._request("DELETE", self.document_name(collection, doc_id))

    async def batch_write(self, writes: list[DocumentWrite]) -> None:
        """Commit several writes and deletes in a single request.

        Merge writes without fields are dropped rather than sent with an
        empty update mask.
        """
        writes = [w for w in writes if w.delete or w.fields or not w.merge]
        if not writes:
            return
        if len(writes) > MAX_BATCH_WRITES:
            raise ValueError(
                f"Batch of {len(writes)} writes exceeds the limit of {MAX_BATCH_WRITES}"
            )
        payload = {"writes": [self._commit_write(w) for w in writes]}
        await self._request("POST", f"{self.database_path}:commit", json=payload)
        logger.debug("Committed batch of %d write(s)", len(writes))

    def _commit_write(self, write: DocumentWrite) -> dict:
        name = self.document_name(write.collection, write.doc_id)
        if write.delete:
            return {"delete": name}
        op: dict = {"update": {"name": name, "fields": encode_fields(write.fields)}}
        if write.merge:
            op["updateMask"] = {"fieldPaths": [field_path(k) for k in write.fields]}
        return op

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        status = error.get("status")
        prefix = f"{resp.status_code} {status}" if status else str(resp.status_code)
        return f"{prefix}: {error['message']}"
    return f"HTTP {resp.status_code}: {resp.text[:200]}"
