"""Database setup and document store for quest records.

This module provides the database connection, the document model and a
small document-store client on top of SQLAlchemy: documents live in named
collections, are addressed by opaque ids, and are written through atomic
batches.
"""

import asyncio
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import create_engine, Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker

from logic.config import load_config

# Database setup
DATABASE_URL = load_config()["database_url"]


def make_engine(url: str):
    """Create an engine, allowing SQLite connections to be shared across threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class Document(Base):
    """A stored document.

    Attributes:
        id: Opaque storage identity.
        collection: Name of the collection the document belongs to.
        data: JSON encoded document body.
        created_at: When the document was written.
    """

    __tablename__ = "documents"

    id = Column(String(32), primary_key=True)
    collection = Column(String(100), nullable=False, index=True)
    data = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class DocumentRef:
    """Reference to a document; comparable by collection and id."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.id = doc_id

    def __eq__(self, other):
        if not isinstance(other, DocumentRef):
            return NotImplemented
        return self.collection == other.collection and self.id == other.id

    def __hash__(self):
        return hash((self.collection, self.id))

    def __repr__(self):
        return f"DocumentRef({self.collection!r}, {self.id!r})"


class DocumentSnapshot:
    """Document as read from the store."""

    def __init__(self, ref: DocumentRef, data: Dict[str, Any]):
        self.ref = ref
        self._data = data

    @property
    def id(self) -> str:
        return self.ref.id

    def data(self) -> Dict[str, Any]:
        return dict(self._data)


class Snapshot:
    """All documents of a collection at one point in time, in store order."""

    def __init__(self, docs: List[DocumentSnapshot]):
        self.docs = docs

    @property
    def size(self) -> int:
        return len(self.docs)

    def __iter__(self):
        return iter(self.docs)


class WriteBatch:
    """Set of deletes and writes committed in a single transaction."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._operations = []

    def delete(self, ref: DocumentRef) -> "WriteBatch":
        self._operations.append(("delete", ref, None))
        return self

    def set(self, ref: DocumentRef, data: Dict[str, Any]) -> "WriteBatch":
        self._operations.append(("set", ref, data))
        return self

    async def commit(self):
        """Apply every operation atomically: all succeed or none do."""
        operations = list(self._operations)
        await asyncio.to_thread(self._store._apply, operations)


class DocumentStore:
    """Document-store client backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def document(self, collection: str) -> DocumentRef:
        """Reference to a new document with a fresh identity."""
        return DocumentRef(collection, uuid.uuid4().hex)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def list_all(self, collection: str) -> Snapshot:
        """Read every document of a collection."""
        return await asyncio.to_thread(self._list, collection)

    def _list(self, collection: str) -> Snapshot:
        db = self._session_factory()
        try:
            rows = db.query(Document).filter(Document.collection == collection).all()
            return Snapshot([
                DocumentSnapshot(DocumentRef(row.collection, row.id), json.loads(row.data))
                for row in rows
            ])
        finally:
            db.close()

    def _apply(self, operations):
        db = self._session_factory()
        try:
            for action, ref, data in operations:
                existing = db.get(Document, ref.id)
                if action == "delete":
                    if existing is not None:
                        db.delete(existing)
                elif existing is None:
                    db.add(Document(id=ref.id, collection=ref.collection, data=json.dumps(data)))
                else:
                    existing.collection = ref.collection
                    existing.data = json.dumps(data)
                db.flush()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def init_db(bind=None):
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=bind or engine)
