"""Persistent registry of scheduled notification handles, keyed by notification type.

The whole mapping lives as one JSON document under a single Redis key. Every
mutation is a read-modify-write of that document, so mutations are serialized
through one asyncio lock and always re-read the stored value under it. The
registry must be the only writer of its key.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from redis.exceptions import RedisError

from modules.notifications.catalog import NotificationType
from modules.notifications.errors import PersistenceError

logger = structlog.get_logger()

REGISTRY_KEY = "notifications:registry"


class ScheduledEntry(BaseModel):
    """One schedule the gateway accepted, recorded so it can be cancelled later."""

    handle: str
    type: NotificationType
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


RegistryMapping = dict[NotificationType, list[ScheduledEntry]]

_ENTRIES = TypeAdapter(list[ScheduledEntry])
_MAPPING = TypeAdapter(RegistryMapping)


def _parse(raw: str | bytes | None) -> RegistryMapping:
    """Decode a stored mapping, dropping whatever cannot be understood."""
    if raw is None:
        return {}
    try:
        document = json.loads(raw)
    except ValueError as e:
        logger.warning("registry_corrupt", error=str(e))
        return {}
    if not isinstance(document, dict):
        logger.warning("registry_corrupt", error=f"expected an object, got {type(document).__name__}")
        return {}

    mapping: RegistryMapping = {}
    for key, value in document.items():
        try:
            ntype = NotificationType(key)
            entries = _ENTRIES.validate_python(value)
        except (ValueError, ValidationError) as e:
            logger.warning("registry_entry_dropped", notification_type=key, error=str(e))
            continue
        if entries:
            mapping[ntype] = entries
    return mapping


class ScheduleRegistry:
    """Type-scoped, atomically updated store of ``ScheduledEntry`` lists."""

    def __init__(self, redis_client, key: str = REGISTRY_KEY):
        self._redis = redis_client
        self._key = key
        self._lock = asyncio.Lock()
        self._entries: RegistryMapping = {}

    @property
    def key(self) -> str:
        return self._key

    def entries(self, ntype: NotificationType) -> list[ScheduledEntry]:
        """Entries last seen for ``ntype`` (no I/O)."""
        return list(self._entries.get(ntype, []))

    def snapshot(self) -> RegistryMapping:
        """Copy of the in-memory view (no I/O)."""
        return {ntype: list(entries) for ntype, entries in self._entries.items()}

    async def load(self) -> RegistryMapping:
        """Read the persisted mapping. Degrades to empty instead of raising."""
        async with self._lock:
            try:
                raw = await self._redis.get(self._key)
            except (RedisError, OSError) as e:
                logger.warning("registry_load_failed", key=self._key, error=str(e))
                mapping: RegistryMapping = {}
            else:
                mapping = _parse(raw)
            self._entries = mapping
        logger.info(
            "registry_loaded",
            key=self._key,
            types=len(mapping),
            entries=sum(len(v) for v in mapping.values()),
        )
        return self.snapshot()

    async def fetch(self) -> RegistryMapping:
        """Re-read the persisted mapping, raising ``PersistenceError`` if the store is unreachable."""
        async with self._lock:
            mapping = await self._read()
            self._entries = mapping
        return self.snapshot()

    async def replace_type(self, ntype: NotificationType, entries: list[ScheduledEntry]) -> None:
        """Swap all entries of ``ntype`` for ``entries``; other types are untouched."""
        async with self._lock:
            mapping = await self._read()
            if entries:
                mapping[ntype] = list(entries)
            else:
                mapping.pop(ntype, None)
            await self._write(mapping)
            self._entries = mapping
        logger.debug("registry_type_replaced", notification_type=ntype.value, entries=len(entries))

    async def remove_type(self, ntype: NotificationType) -> list[ScheduledEntry]:
        """Delete and return the entries recorded for ``ntype``."""
        async with self._lock:
            mapping = await self._read()
            removed = mapping.pop(ntype, [])
            if removed:
                await self._write(mapping)
            self._entries = mapping
        if removed:
            logger.debug("registry_type_removed", notification_type=ntype.value, entries=len(removed))
        return removed

    async def clear(self) -> None:
        """Drop every entry of every type."""
        async with self._lock:
            try:
                await self._redis.delete(self._key)
            except (RedisError, OSError) as e:
                raise PersistenceError(f"Failed to clear registry {self._key}: {e}") from e
            self._entries = {}
        logger.info("registry_cleared", key=self._key)

    async def _read(self) -> RegistryMapping:
        try:
            raw = await self._redis.get(self._key)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to read registry {self._key}: {e}") from e
        return _parse(raw)

    async def _write(self, mapping: RegistryMapping) -> None:
        try:
            if mapping:
                await self._redis.set(self._key, _MAPPING.dump_json(mapping).decode())
            else:
                await self._redis.delete(self._key)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to write registry {self._key}: {e}") from e
