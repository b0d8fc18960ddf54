"""
Entry store service.

Keeps the ordered, persisted collection of one tracker's entries. The
collection is sorted by timestamp (newest first) after every mutation and
each mutation is persisted before it becomes visible: when the save fails
the in-memory sequence keeps its previous state and the error is raised.
"""

import json
import logging
from collections.abc import Callable, Iterable, Iterator
from typing import Generic, TypeVar

from pydantic import ValidationError as PydanticValidationError

from health_tracker_sync.domain.entries import Entry
from health_tracker_sync.infrastructure.storage.kv_store import KeyValueStore
from health_tracker_sync.utils.exceptions import DecodingError, EncodingError

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entry)

ChangeListener = Callable[[], None]


def sort_entries(entries: Iterable[E]) -> list[E]:
    """Return entries ordered newest first."""
    return sorted(entries, key=lambda e: e.timestamp, reverse=True)


class EntryStore(Generic[E]):
    """
    Ordered collection of entries for one tracker.

    Usage::

        store = EntryStore("weight", WeightEntry, kv_store)
        store.load()
        store.append(WeightEntry(timestamp=now, weight_lbs=150.0))
        removed = store.remove(lambda e: e.id == entry_id)
    """

    def __init__(self, tracker: str, entry_cls: type[E], kv_store: KeyValueStore) -> None:
        """
        Initialize entry store.

        Args:
            tracker: Tracker name, used to derive the storage key.
            entry_cls: Entry model used to decode persisted records.
            kv_store: Durable key-value storage.
        """
        self.tracker = tracker
        self.entry_cls = entry_cls
        self.key = f"{tracker}.entries"
        self._kv = kv_store
        self._entries: tuple[E, ...] = ()
        self._listeners: list[ChangeListener] = []
        self.version = 0

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def all(self) -> tuple[E, ...]:
        """Current entries, newest first."""
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[E]:
        return iter(self._entries)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(self, entry: E) -> None:
        """
        Insert an entry and persist.

        Raises:
            PersistenceError: If the new snapshot cannot be saved.
        """
        self._commit([*self._entries, entry])

    def remove(self, predicate: Callable[[E], bool]) -> list[E]:
        """
        Remove every entry matching ``predicate`` and persist.

        Returns:
            The removed entries (empty when nothing matched; nothing is written then).

        Raises:
            PersistenceError: If the new snapshot cannot be saved.
        """
        removed = [e for e in self._entries if predicate(e)]
        if not removed:
            return []

        removed_ids = {e.id for e in removed}
        self._commit([e for e in self._entries if e.id not in removed_ids])
        return removed

    def replace(self, entries: Iterable[E]) -> None:
        """
        Replace the whole collection in one persisted step.

        Used to apply a reconciliation diff atomically.

        Raises:
            PersistenceError: If the new snapshot cannot be saved.
        """
        self._commit(list(entries))

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback invoked after every successful mutation."""
        self._listeners.append(listener)

    def _commit(self, entries: list[E]) -> None:
        ordered = sort_entries(entries)
        blob = self.encode(ordered)
        self._kv.save(blob, self.key)

        self._entries = tuple(ordered)
        self.version += 1

        for listener in self._listeners:
            listener()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """
        Load the persisted snapshot, if any.

        Raises:
            DecodingError: If the stored snapshot is corrupt.
        """
        blob = self._kv.load(self.key)
        if blob is None:
            logger.debug(f"No persisted {self.tracker} entries")
            return

        self._entries = tuple(sort_entries(self.decode(blob)))
        self.version += 1
        logger.info(f"Loaded {len(self._entries)} {self.tracker} entries")

    def encode(self, entries: Iterable[E]) -> bytes:
        """
        Serialize entries to the persisted snapshot format.

        Raises:
            EncodingError: If an entry cannot be serialized.
        """
        try:
            return json.dumps([e.to_dict() for e in entries], separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Failed to encode data for key '{self.key}': {e}", self.key) from e

    def decode(self, blob: bytes) -> list[E]:
        """
        Deserialize a persisted snapshot.

        Raises:
            DecodingError: If the snapshot is not a list of valid entry records.
        """
        try:
            records = json.loads(blob.decode("utf-8"))
            if not isinstance(records, list):
                raise ValueError("snapshot is not a list")
            return [self.entry_cls.from_dict(record) for record in records]
        except (UnicodeDecodeError, ValueError, TypeError, PydanticValidationError) as e:
            raise DecodingError(f"Failed to decode data for key '{self.key}': {e}", self.key) from e
