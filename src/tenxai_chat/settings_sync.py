"""Settings synchronisation — merge a client settings document with the server's."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .chat_logs import ChatLogClient

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class MergeStrategy(StrEnum):
    LATEST_WINS = "latest_wins"
    CLIENT_WINS = "client_wins"
    SERVER_WINS = "server_wins"
    MANUAL_RESOLVE = "manual_resolve"


class SyncMetadata(BaseModel):
    """Version stamp of a settings document; times are epoch milliseconds."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: int = 1
    device_id: str
    last_modified: int
    last_synced: int


class SyncableSettings(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: SyncMetadata


class Conflict(BaseModel):
    client: Any = None
    server: Any = None
    path: list[str]


ManualResolver = Callable[[Conflict], Awaitable[Any]]


def is_newer(a: SyncMetadata, b: SyncMetadata) -> bool:
    return a.last_modified > b.last_modified


def find_differences(a: Any, b: Any, path: list[str] | None = None) -> list[str]:
    """Dotted paths at which *a* and *b* differ, recursing into dicts."""
    path = path or []
    if a == b:
        return []
    if not isinstance(a, dict) or not isinstance(b, dict):
        return [".".join(path)]

    differences: list[str] = []
    for key in dict.fromkeys([*a, *b]):
        differences.extend(find_differences(a.get(key), b.get(key), [*path, key]))
    return differences


def _get_nested(data: Any, path: list[str]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _set_nested(data: dict[str, Any], path: list[str], value: Any) -> None:
    *parents, last = path
    for key in parents:
        data = data.setdefault(key, {})
    data[last] = value


async def merge_settings(
    client: SyncableSettings,
    server: SyncableSettings,
    strategy: MergeStrategy,
    on_manual_resolve: ManualResolver | None = None,
) -> SyncableSettings:
    """Reconcile two versions of the settings document.

    Identical data always resolves to the newer side. Otherwise *strategy*
    decides; ``MANUAL_RESOLVE`` asks *on_manual_resolve* for every
    conflicting path and starts from the client's data.
    """
    logger.debug("Merging settings with strategy %s", strategy)

    conflicts = find_differences(client.data, server.data)
    if not conflicts:
        return client if is_newer(client.metadata, server.metadata) else server

    logger.info("Settings conflict on %s", ", ".join(conflicts))

    if strategy == MergeStrategy.LATEST_WINS:
        return client if is_newer(client.metadata, server.metadata) else server

    if strategy == MergeStrategy.CLIENT_WINS:
        return SyncableSettings(
            data=client.data,
            metadata=client.metadata.model_copy(update={"last_synced": now_ms()}),
        )

    if strategy == MergeStrategy.SERVER_WINS:
        return SyncableSettings(
            data=server.data,
            metadata=server.metadata.model_copy(update={"last_synced": now_ms()}),
        )

    if strategy == MergeStrategy.MANUAL_RESOLVE:
        if on_manual_resolve is None:
            msg = "Manual resolve strategy requires an on_manual_resolve callback"
            raise ValueError(msg)

        resolved = copy.deepcopy(client.data)
        for conflict_path in conflicts:
            parts = conflict_path.split(".")
            value = await on_manual_resolve(
                Conflict(
                    client=_get_nested(client.data, parts),
                    server=_get_nested(server.data, parts),
                    path=parts,
                )
            )
            _set_nested(resolved, parts, value)

        stamp = now_ms()
        return SyncableSettings(
            data=resolved,
            metadata=client.metadata.model_copy(
                update={"last_modified": stamp, "last_synced": stamp}
            ),
        )

    msg = f"Unknown merge strategy: {strategy}"
    raise ValueError(msg)


def create_sync_metadata(device_id: str) -> SyncMetadata:
    stamp = now_ms()
    return SyncMetadata(version=1, device_id=device_id, last_modified=stamp, last_synced=stamp)


def is_valid_sync_metadata(metadata: Any) -> bool:
    if not isinstance(metadata, dict):
        return False
    fields = {
        "version": int,
        "deviceId": str,
        "lastModified": int,
        "lastSynced": int,
    }
    for key, kind in fields.items():
        value = metadata.get(key)
        if isinstance(value, bool) or not isinstance(value, kind):
            return False
    return True


def update_sync_metadata(metadata: SyncMetadata) -> SyncMetadata:
    return metadata.model_copy(update={"last_synced": now_ms()})


class UserSettingsSync:
    """Pulls the user-settings document, merges it and pushes the result."""

    def __init__(
        self,
        client: ChatLogClient,
        device_id: str,
        strategy: MergeStrategy = MergeStrategy.LATEST_WINS,
        on_manual_resolve: ManualResolver | None = None,
    ) -> None:
        self._client = client
        self._device_id = device_id
        self._strategy = strategy
        self._on_manual_resolve = on_manual_resolve

    def _server_settings(self) -> SyncableSettings | None:
        envelope = self._client.get_user_settings()
        if not envelope.ok or not isinstance(envelope.data, dict):
            logger.warning("User settings unavailable: %s", envelope.error)
            return None

        document = envelope.data
        settings = document.get("settings") or {}
        raw_meta = document.get("syncMetadata")
        if is_valid_sync_metadata(raw_meta):
            metadata = SyncMetadata.model_validate(raw_meta)
        else:
            # legacy documents carry no metadata; treat them as oldest
            metadata = SyncMetadata(device_id="server", last_modified=0, last_synced=0)
        return SyncableSettings(data=settings, metadata=metadata)

    async def sync(self, local: SyncableSettings) -> SyncableSettings:
        """Merge *local* with the server copy and store the merged document remotely."""
        server = await asyncio.to_thread(self._server_settings)
        if server is None:
            merged = local
        else:
            merged = await merge_settings(local, server, self._strategy, self._on_manual_resolve)

        merged = SyncableSettings(data=merged.data, metadata=update_sync_metadata(merged.metadata))
        await asyncio.to_thread(
            self._client.put_user_settings,
            {
                "userId": self._client.user_id,
                "settings": merged.data,
                "syncMetadata": merged.metadata.model_dump(by_alias=True),
            },
        )
        logger.info("User settings synced for device %s", self._device_id)
        return merged

    def local_settings(self, data: dict[str, Any]) -> SyncableSettings:
        """Wrap freshly edited local *data* with a new metadata stamp."""
        return SyncableSettings(data=data, metadata=create_sync_metadata(self._device_id))
