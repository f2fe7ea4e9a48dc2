"""Seeds a ProjectStore from Firestore and keeps it following remote changes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .firestore import PROJECT_GROUPS, PROJECTS, RESOURCES, DocumentWrite, FirestoreClient
from .store import ProjectStore

logger = logging.getLogger(__name__)


def plan_group_order_migration(
    docs: list[tuple[str, Any]],
) -> tuple[list[tuple[str, Any]], list[DocumentWrite]]:
    """Give every group document without an ``order`` its list position.

    Returns the patched documents and the writes that persist the new orders.
    """
    patched: list[tuple[str, Any]] = []
    writes: list[DocumentWrite] = []
    for index, (doc_id, data) in enumerate(docs):
        data = data if isinstance(data, dict) else {}
        if data.get("order") is None:
            data = {**data, "order": index}
            writes.append(DocumentWrite(PROJECT_GROUPS, doc_id, {"order": index}))
        patched.append((doc_id, data))
    return patched, writes


async def apply_group_snapshot(
    store: ProjectStore,
    client: FirestoreClient,
    docs: list[tuple[str, Any]],
) -> None:
    """Apply a group snapshot, writing back orders for unordered groups."""
    patched, writes = plan_group_order_migration(docs)
    if writes:
        logger.info("Assigning order to %d group(s)", len(writes))
        try:
            await client.batch_write(writes)
        except Exception as e:
            logger.error("Failed to migrate group order: %s", e)
    store.apply_remote_groups(patched)


async def load_remote(store: ProjectStore, client: FirestoreClient) -> None:
    """Seed ``store`` with the user's current projects, groups and resources."""
    logger.info("Fetching projects, groups and resources...")
    projects, groups, resources = await asyncio.gather(
        client.list_documents(PROJECTS),
        client.list_documents(PROJECT_GROUPS),
        client.list_documents(RESOURCES),
    )
    logger.info(
        "Found %d project(s) in %d group(s), %d resource(s)",
        len(projects),
        len(groups),
        len(resources),
    )
    store.apply_remote_projects(projects)
    store.apply_remote_resources(resources)
    await apply_group_snapshot(store, client, groups)


async def follow_remote(
    store: ProjectStore,
    client: FirestoreClient,
    interval: float = 5.0,
) -> None:
    """Apply every remote snapshot to ``store`` until cancelled.

    Remote snapshots are authoritative and replace local state wholesale.
    """

    async def follow_projects() -> None:
        async for docs in client.watch(PROJECTS, interval):
            store.apply_remote_projects(docs)

    async def follow_groups() -> None:
        async for docs in client.watch(PROJECT_GROUPS, interval):
            await apply_group_snapshot(store, client, docs)

    async def follow_resources() -> None:
        async for docs in client.watch(RESOURCES, interval):
            store.apply_remote_resources(docs)

    await asyncio.gather(follow_projects(), follow_groups(), follow_resources())
