"""
Notification Store for Listing Alerts.

Append-only log of delivered notifications, newest first, with read state.
Retention is enforced on every write (at most 100 entries, oldest evicted
first, nothing older than 7 days) and by a periodic sweep.

Counts such as unread totals are always recomputed from the log itself.
"""

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Optional

from .models import (
    Interaction,
    NotificationRecord,
    TriggerType,
    SCHEMA_VERSION,
)
from .storage import KeyValueStore, load_json, save_json

logger = logging.getLogger(__name__)


class NotificationStore:
    """
    Persisted log of NotificationRecords.

    Usage:
        store = NotificationStore(kv_store)
        store.load()
        store.save(record)
        store.mark_read(record.id)
    """

    STORAGE_KEY = "notifications"
    MAX_ENTRIES = 100
    MAX_AGE_DAYS = 7

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        key: str = STORAGE_KEY,
        clock: Callable[[], datetime] = datetime.now,
        max_entries: int = MAX_ENTRIES,
        max_age_days: float = MAX_AGE_DAYS,
        lock: Optional[threading.RLock] = None,
    ):
        self.store = store
        self.key = key
        self.clock = clock
        self.max_entries = max_entries
        self.max_age_days = max_age_days
        self._records: list[NotificationRecord] = []
        self._last_id = 0
        self._lock = lock or threading.RLock()

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def load(self) -> int:
        """
        Load the log from the key-value store.

        Returns:
            Number of records loaded
        """
        if self.store is None:
            return 0
        data = load_json(self.store, self.key)
        if data is None:
            return 0

        # Unversioned layout: a bare list of records
        if isinstance(data, list):
            data = {"records": data}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed notification log under {self.key}")
            return 0
        if data.get("version") not in (None, SCHEMA_VERSION):
            logger.warning(f"Loading {self.key} with schema version {data.get('version')}")

        records = []
        for raw in data.get("records") or []:
            try:
                records.append(NotificationRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed notification record: {e}")

        with self._lock:
            records.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
            self._records = records
            ids = [r.id for r in records]
            self._last_id = max([int(data.get("last_id") or 0)] + ids)
            self._apply_retention()

        logger.info(f"Loaded {len(self._records)} records from {self.key}")
        return len(self._records)

    def _persist(self) -> bool:
        if self.store is None:
            return True
        return save_json(self.store, self.key, {
            "version": SCHEMA_VERSION,
            "last_id": self._last_id,
            "records": [r.to_dict() for r in self._records],
        })

    # =========================================================================
    # WRITES
    # =========================================================================

    def next_id(self) -> int:
        """Allocate a unique id, strictly increasing in creation order."""
        with self._lock:
            candidate = int(self.clock().timestamp() * 1000)
            self._last_id = max(candidate, self._last_id + 1)
            return self._last_id

    def save(self, record: NotificationRecord) -> NotificationRecord:
        """Add a record at the head of the log (replacing one with the same id)."""
        with self._lock:
            self._records = [r for r in self._records if r.id != record.id]
            self._records.insert(0, record)
            self._last_id = max(self._last_id, record.id)
            self._apply_retention()
            self._persist()
        logger.debug(f"Saved notification {record.id} to {self.key}")
        return record

    def mark_read(self, notification_id: int) -> bool:
        """
        Mark a record as read.

        Marking an already-read record is a no-op success.

        Returns:
            True if the record exists
        """
        with self._lock:
            record = self.get(notification_id)
            if record is None:
                return False
            if not record.read:
                record.read = True
                record.read_at = self.clock()
                self._persist()
            return True

    def mark_all_read(self) -> int:
        """Mark every unread record as read. Returns how many changed."""
        with self._lock:
            now = self.clock()
            changed = 0
            for record in self._records:
                if not record.read:
                    record.read = True
                    record.read_at = now
                    changed += 1
            if changed:
                self._persist()
            return changed

    def set_interaction(self, notification_id: int, interaction: Interaction) -> Optional[NotificationRecord]:
        with self._lock:
            record = self.get(notification_id)
            if record is None:
                return None
            record.interaction = interaction
            self._persist()
            return record

    def delete(self, notification_id: int) -> bool:
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.id != notification_id]
            if len(self._records) == before:
                return False
            self._persist()
            return True

    def clear_all(self) -> None:
        with self._lock:
            self._records = []
            self._persist()
        logger.info(f"Cleared all records from {self.key}")

    def sweep_expired(self) -> int:
        """Drop records past the age ceiling. Returns how many were removed."""
        with self._lock:
            removed = self._apply_retention()
            if removed:
                self._persist()
        if removed:
            logger.info(f"Swept {removed} expired records from {self.key}")
        return removed

    def _apply_retention(self) -> int:
        """Enforce age ceiling and entry cap. Caller holds the lock."""
        before = len(self._records)
        cutoff = self.clock() - timedelta(days=self.max_age_days)
        self._records = [r for r in self._records if r.timestamp > cutoff]
        # Newest first, so the tail is the oldest
        del self._records[self.max_entries:]
        return before - len(self._records)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, notification_id: int) -> Optional[NotificationRecord]:
        for record in self._records:
            if record.id == notification_id:
                return record
        return None

    def get_notifications(self) -> list[NotificationRecord]:
        """All records, newest first."""
        with self._lock:
            return list(self._records)

    def latest(self) -> Optional[NotificationRecord]:
        with self._lock:
            if not self._records:
                return None
            return max(self._records, key=lambda r: (r.timestamp, r.id))

    def count_since(self, cutoff: datetime, inclusive: bool = True) -> int:
        with self._lock:
            if inclusive:
                return sum(1 for r in self._records if r.timestamp >= cutoff)
            return sum(1 for r in self._records if r.timestamp > cutoff)

    def records_since(self, cutoff: datetime) -> list[NotificationRecord]:
        with self._lock:
            return [r for r in self._records if r.timestamp > cutoff]

    def get_unread(self) -> list[NotificationRecord]:
        with self._lock:
            return [r for r in self._records if not r.read]

    def get_unread_count(self) -> int:
        return len(self.get_unread())

    def get_by_trigger_type(self, trigger_type: TriggerType) -> list[NotificationRecord]:
        with self._lock:
            return [r for r in self._records if r.trigger_type == trigger_type]

    def get_recent(self, days: float = 7) -> list[NotificationRecord]:
        cutoff = self.clock() - timedelta(days=days)
        return self.records_since(cutoff)

    def get_stats(self) -> dict:
        with self._lock:
            total = len(self._records)
            unread = sum(1 for r in self._records if not r.read)
            by_trigger = Counter(r.trigger_type.value for r in self._records)
        return {
            "total": total,
            "unread": unread,
            "read": total - unread,
            "by_trigger_type": dict(by_trigger),
        }

    def __len__(self) -> int:
        return len(self._records)

    # =========================================================================
    # BACKUP
    # =========================================================================

    def export(self) -> dict:
        """Snapshot of the log for backup."""
        with self._lock:
            return {
                "version": SCHEMA_VERSION,
                "notifications": [r.to_dict() for r in self._records],
                "stats": self.get_stats(),
                "exported_at": self.clock().isoformat(),
            }

    def import_records(self, data: dict) -> int:
        """
        Replace the log with records from an export.

        Raises:
            ValueError: If data does not contain a notifications list
        """
        raw_records = data.get("notifications") if isinstance(data, dict) else None
        if not isinstance(raw_records, list):
            raise ValueError("Invalid notification data")

        records = []
        for raw in raw_records:
            try:
                records.append(NotificationRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed imported record: {e}")

        with self._lock:
            records.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
            self._records = records
            self._last_id = max([self._last_id] + [r.id for r in records])
            self._apply_retention()
            self._persist()
            return len(self._records)
