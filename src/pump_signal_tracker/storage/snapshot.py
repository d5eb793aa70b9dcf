"""Redis-backed snapshot persistence for warm restarts."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class SnapshotError(Exception):
    """Raised when a snapshot cannot be written or read."""


@dataclass
class Snapshot:
    """Token summaries, alert records and global counters at one instant."""

    tokens: list[dict[str, Any]] = field(default_factory=list)
    outcomes: dict[str, Any] = field(default_factory=dict)
    saved_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "saved_at": self.saved_at.isoformat(),
            "tokens": self.tokens,
            "outcomes": self.outcomes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {version!r}")
        return cls(
            tokens=list(data.get("tokens") or []),
            outcomes=dict(data.get("outcomes") or {}),
            saved_at=datetime.fromisoformat(data["saved_at"]),
        )


class SnapshotStore:
    """Stores the whole snapshot as one JSON document.

    A single SET keeps each write atomic: readers see either the previous
    snapshot or the new one.

      key = {prefix}state
    """

    def __init__(self, redis: Redis, *, key_prefix: str = "pump:snapshot:") -> None:
        self._redis = redis
        self._key = f"{key_prefix}state"

    @property
    def key(self) -> str:
        return self._key

    async def save(self, snapshot: Snapshot) -> int:
        """Write a snapshot. Returns the encoded size in bytes."""
        try:
            encoded = json.dumps(snapshot.to_dict())
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Snapshot is not serialisable: {e}") from e
        try:
            await self._redis.set(self._key, encoded)
        except RedisError as e:
            raise SnapshotError(f"Failed to write snapshot: {e}") from e
        logger.debug(
            "Saved snapshot: %d tokens, %d alert records (%d bytes)",
            len(snapshot.tokens),
            len(snapshot.outcomes.get("records", [])),
            len(encoded),
        )
        return len(encoded)

    async def load(self) -> Snapshot | None:
        """Read the last snapshot, or None if there is none."""
        try:
            raw = await self._redis.get(self._key)
        except RedisError as e:
            raise SnapshotError(f"Failed to read snapshot: {e}") from e
        if raw is None:
            return None

        text = raw.decode() if isinstance(raw, bytes) else str(raw)
        try:
            return Snapshot.from_dict(json.loads(text))
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"Corrupt snapshot at {self._key}: {e}") from e

    async def clear(self) -> None:
        try:
            await self._redis.delete(self._key)
        except RedisError as e:
            raise SnapshotError(f"Failed to delete snapshot: {e}") from e
