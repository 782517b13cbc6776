"""
Quest persistence.

This module translates the linked quest sequence into flat documents that
point forward to each other, and back. Writes go through a single-writer
queue so overlapping saves are applied strictly in submission order and the
last snapshot submitted is the one that remains stored.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, NamedTuple, Optional

from logic.geo import LngLat
from logic.quests import Quest

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class QuestRecord(NamedTuple):
    """Immutable copy of the persisted fields of a quest."""

    id: int
    lng: float
    lat: float
    timestamp: str
    has_next: bool


def snapshot_quests(quests) -> List[QuestRecord]:
    """Copy the persisted fields of every quest at this moment."""
    return [
        QuestRecord(q.id, q.location.lng, q.location.lat, q.timestamp, q.next is not None)
        for q in quests
    ]


def split_timestamp(iso: str) -> Dict[str, int]:
    """Split an ISO-8601 time into epoch seconds and a nanosecond remainder.

    The remainder keeps millisecond precision.
    """
    moment = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    delta = moment - EPOCH
    millis = delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000
    seconds = millis // 1000
    nanoseconds = (millis - seconds * 1000) * 1_000_000
    return {"seconds": seconds, "nanoseconds": nanoseconds}


def join_timestamp(value: Dict[str, int]) -> str:
    """Inverse of split_timestamp."""
    moment = EPOCH + timedelta(seconds=int(value["seconds"]), microseconds=int(value["nanoseconds"]) // 1000)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def record_to_data(record: QuestRecord, next_id: Optional[str]) -> Dict[str, Any]:
    return {
        "quest_id": record.id,
        "location": {"latitude": record.lat, "longitude": record.lng},
        "timestamp": split_timestamp(record.timestamp),
        "next": next_id,
    }


def data_to_quest(data: Dict[str, Any]) -> Quest:
    location = data["location"]
    return Quest(
        int(data["quest_id"]),
        LngLat(float(location["longitude"]), float(location["latitude"])),
        join_timestamp(data["timestamp"]),
    )


def check_chain(quests: List[Quest]):
    """Make sure the links form one chain through every quest with ids 1..N.

    Raises:
        ValueError: On a missing head, a cycle, a branch, a skipped quest or
            an id that does not match the quest's position in the chain.
    """
    if not quests:
        return

    heads = [q for q in quests if q.id == 1]
    if len(heads) != 1:
        raise ValueError(f"Expected one quest with id 1, found {len(heads)}")

    seen = set()
    position = 0
    current = heads[0]
    while current is not None:
        if id(current) in seen:
            raise ValueError(f"Quest chain loops back to quest {current.id}")
        seen.add(id(current))
        position += 1
        if current.id != position:
            raise ValueError(f"Quest {current.id} found at position {position}")
        current = current.next

    if position != len(quests):
        raise ValueError(f"Quest chain reaches {position} of {len(quests)} quests")


class QuestRepository:
    """Reads and writes the quest sequence in a document collection.

    Args:
        store: Document-store client (see database.DocumentStore).
        collection: Name of the collection holding quest documents.
    """

    def __init__(self, store, collection: str = "quests"):
        self.store = store
        self.collection = collection

    async def write(self, quests):
        """Replace the stored sequence with the given quests."""
        await self.write_records(snapshot_quests(quests))

    async def write_records(self, records: List[QuestRecord]):
        """Replace every stored document with one per record.

        Existing documents are deleted first on a best-effort basis. New
        documents are written from the tail backwards so each one can point
        at the document of its successor. Failures are logged, never raised.
        """
        await self._clear()

        try:
            batch = self.store.batch()
            prev_ref = None

            for record in sorted(records, key=lambda r: r.id, reverse=True):
                ref = self.store.document(self.collection)
                next_id = prev_ref.id if record.has_next and prev_ref is not None else None
                batch.set(ref, record_to_data(record, next_id))
                prev_ref = ref

            await batch.commit()
            logger.debug("Successfully added %d quests to database", len(records))
        except Exception as e:
            logger.error("Error adding quests to database: %s", e)

    async def _clear(self):
        try:
            snapshot = await self.store.list_all(self.collection)
            if not snapshot.size:
                return

            logger.debug("Found %d documents in database. Deleting them...", snapshot.size)
            batch = self.store.batch()
            for doc in snapshot:
                batch.delete(doc.ref)
            await batch.commit()
            logger.debug("Successfully cleaned quests database")
        except Exception as e:
            logger.error("Error while cleaning quests database: %s", e)

    async def load(self) -> Optional[List[Quest]]:
        """Rebuild quests from the store.

        Returns:
            Quests in store order with every ``next`` link resolved to a
            quest of the same list, or None if the store could not be read or the
            stored links do not form a single chain with ids 1..N.
        """
        try:
            snapshot = await self.store.list_all(self.collection)

            by_doc_id = {}
            quests = []
            for doc in snapshot:
                quest = data_to_quest(doc.data())
                by_doc_id[doc.id] = quest
                quests.append(quest)

            for doc in snapshot:
                next_id = doc.data().get("next")
                if next_id is None:
                    continue
                target = by_doc_id.get(next_id)
                if target is None:
                    raise ValueError(f"Quest document {doc.id} points at missing document {next_id}")
                by_doc_id[doc.id].next = target

            check_chain(quests)
            return quests
        except Exception as e:
            logger.error("Error loading database: %s", e)
            return None


class PersistenceQueue:
    """Single writer for one collection.

    Each submitted snapshot is written in order by one worker task; callers
    wait for their own write to settle. No merging happens: after overlapping
    submissions the store holds the last one.
    """

    def __init__(self, repository: QuestRepository):
        self._repository = repository
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop = None
        self.completed = 0

    def _ensure_worker(self):
        loop = asyncio.get_running_loop()
        if self._worker is None or self._worker.done() or self._loop is not loop:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._run())

    async def submit(self, quests):
        """Queue a full write of the quests and wait until it has been applied."""
        self._ensure_worker()
        done = self._loop.create_future()
        await self._queue.put((snapshot_quests(quests), done))
        await done

    async def _run(self):
        while True:
            records, done = await self._queue.get()
            try:
                await self._repository.write_records(records)
            except Exception as e:
                logger.error("Error writing quests: %s", e)
            finally:
                self.completed += 1
                if not done.done():
                    done.set_result(None)
                self._queue.task_done()

    async def close(self):
        """Wait for pending writes, then stop the worker."""
        if self._worker is None:
            return
        if self._loop is asyncio.get_running_loop():
            await self._queue.join()
        self._worker.cancel()
        self._worker = None
