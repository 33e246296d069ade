"""Alert history ledger: decides which alerts are worth notifying again.

Each alert id is either unseen (no entry) or tracked (an entry holding
``first_detected`` and ``last_notified``). On every scan:

- an unseen alert becomes tracked and is returned as new;
- a tracked alert is returned again only once ``renotify_after`` has
  elapsed since it was last notified, and ``last_notified`` moves to now;
- otherwise it is suppressed and its entry is left untouched.

Ids missing from a scan keep their entries. Only ``prune`` removes
entries, once ``first_detected`` is older than the retention window,
regardless of how recently they were notified.

Both jobs share one ledger, so lookup-and-update and pruning run under a
single lock.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from src.compliance.config import ComplianceConfig
from src.compliance.schemas import Alert

logger = logging.getLogger(__name__)


@dataclass
class AlertHistoryEntry:
    """Notification history of one alert id. Owned by the ledger."""

    alert_id: str
    first_detected: datetime
    last_notified: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "first_detected": self.first_detected.isoformat(),
            "last_notified": self.last_notified.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertHistoryEntry":
        return cls(
            alert_id=data["alert_id"],
            first_detected=datetime.fromisoformat(data["first_detected"]),
            last_notified=datetime.fromisoformat(data["last_notified"]),
        )


class AlertHistoryLedger(ABC):
    """Keyed store of alert notification history with throttle and retention policy."""

    def __init__(
        self,
        renotify_after: timedelta = timedelta(days=7),
        retention: timedelta = timedelta(days=30),
    ) -> None:
        self._renotify_after = renotify_after
        self._retention = retention
        self._lock = asyncio.Lock()

    @property
    def renotify_after(self) -> timedelta:
        return self._renotify_after

    @property
    def retention(self) -> timedelta:
        return self._retention

    def _should_renotify(self, entry: AlertHistoryEntry, now: datetime) -> bool:
        return now - entry.last_notified >= self._renotify_after

    def _is_expired(self, entry: AlertHistoryEntry, now: datetime) -> bool:
        return now - entry.first_detected >= self._retention

    @abstractmethod
    async def admit_and_filter(
        self,
        alerts: list[Alert],
        now: datetime | None = None,
    ) -> list[Alert]:
        """Record a scan's alerts and return those that should be notified.

        Args:
            alerts: Every alert produced by the scan.
            now: Scan time (default: current UTC time).

        Returns:
            Alerts seen for the first time, plus tracked alerts whose
            re-notification window has elapsed. Input order is kept.
        """

    @abstractmethod
    async def prune(self, now: datetime | None = None) -> int:
        """Remove entries first detected at least ``retention`` ago.

        Returns:
            Number of entries removed.
        """

    @abstractmethod
    async def get(self, alert_id: str) -> AlertHistoryEntry | None:
        """Return the entry for an alert id, or None if unseen."""

    @abstractmethod
    async def size(self) -> int:
        """Number of tracked alert ids."""


class InMemoryAlertLedger(AlertHistoryLedger):
    """Process-local ledger. Size is bounded by the retention window."""

    def __init__(
        self,
        renotify_after: timedelta = timedelta(days=7),
        retention: timedelta = timedelta(days=30),
    ) -> None:
        super().__init__(renotify_after=renotify_after, retention=retention)
        self._entries: dict[str, AlertHistoryEntry] = {}

    @classmethod
    def from_config(cls, config: ComplianceConfig) -> "InMemoryAlertLedger":
        return cls(
            renotify_after=timedelta(days=config.renotify_after_days),
            retention=timedelta(days=config.history_retention_days),
        )

    async def admit_and_filter(
        self,
        alerts: list[Alert],
        now: datetime | None = None,
    ) -> list[Alert]:
        now = now or datetime.now(timezone.utc)
        admitted: list[Alert] = []

        async with self._lock:
            for alert in alerts:
                entry = self._entries.get(alert.alert_id)
                if entry is None:
                    self._entries[alert.alert_id] = AlertHistoryEntry(
                        alert_id=alert.alert_id,
                        first_detected=now,
                        last_notified=now,
                    )
                    admitted.append(alert)
                elif self._should_renotify(entry, now):
                    entry.last_notified = now
                    admitted.append(alert)

        logger.debug(
            "Ledger admitted %d of %d alerts (%d tracked)",
            len(admitted), len(alerts), len(self._entries),
        )
        return admitted

    async def prune(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self._lock:
            expired = [
                alert_id
                for alert_id, entry in self._entries.items()
                if self._is_expired(entry, now)
            ]
            for alert_id in expired:
                del self._entries[alert_id]
        return len(expired)

    async def get(self, alert_id: str) -> AlertHistoryEntry | None:
        return self._entries.get(alert_id)

    async def size(self) -> int:
        return len(self._entries)


class RedisAlertLedger(AlertHistoryLedger):
    """Ledger persisted in a Redis hash so history survives restarts.

    Hash field = alert id, value = JSON entry. The lock serialises
    writers within this process; run a single scheduler process per
    Redis key.
    """

    def __init__(
        self,
        redis_client: Any,
        key: str = "compliance:alert_history",
        renotify_after: timedelta = timedelta(days=7),
        retention: timedelta = timedelta(days=30),
    ) -> None:
        super().__init__(renotify_after=renotify_after, retention=retention)
        self._redis = redis_client
        self._key = key

    @classmethod
    def from_config(
        cls,
        redis_client: Any,
        config: ComplianceConfig,
        key: str = "compliance:alert_history",
    ) -> "RedisAlertLedger":
        return cls(
            redis_client=redis_client,
            key=key,
            renotify_after=timedelta(days=config.renotify_after_days),
            retention=timedelta(days=config.history_retention_days),
        )

    @staticmethod
    def _decode(raw: bytes | str) -> AlertHistoryEntry:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return AlertHistoryEntry.from_dict(json.loads(raw))

    async def _write(self, entry: AlertHistoryEntry) -> None:
        await self._redis.hset(self._key, entry.alert_id, json.dumps(entry.to_dict()))

    async def admit_and_filter(
        self,
        alerts: list[Alert],
        now: datetime | None = None,
    ) -> list[Alert]:
        now = now or datetime.now(timezone.utc)
        admitted: list[Alert] = []

        async with self._lock:
            for alert in alerts:
                raw = await self._redis.hget(self._key, alert.alert_id)
                if raw is None:
                    await self._write(AlertHistoryEntry(
                        alert_id=alert.alert_id,
                        first_detected=now,
                        last_notified=now,
                    ))
                    admitted.append(alert)
                    continue

                entry = self._decode(raw)
                if self._should_renotify(entry, now):
                    entry.last_notified = now
                    await self._write(entry)
                    admitted.append(alert)

        return admitted

    async def prune(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self._lock:
            raw_entries = await self._redis.hgetall(self._key)
            expired: list[str] = []
            for field, raw in raw_entries.items():
                if isinstance(field, bytes):
                    field = field.decode("utf-8")
                try:
                    entry = self._decode(raw)
                except (ValueError, KeyError) as e:
                    # Unreadable entries cannot be aged; drop them
                    logger.warning("Dropping corrupt history entry %s: %s", field, e)
                    expired.append(field)
                    continue
                if self._is_expired(entry, now):
                    expired.append(field)

            if expired:
                await self._redis.hdel(self._key, *expired)
        return len(expired)

    async def get(self, alert_id: str) -> AlertHistoryEntry | None:
        raw = await self._redis.hget(self._key, alert_id)
        if raw is None:
            return None
        return self._decode(raw)

    async def size(self) -> int:
        return int(await self._redis.hlen(self._key))
