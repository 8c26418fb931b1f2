"""
Versioned document store.

Two implementations share one narrow interface:
- InMemoryDocumentStore: lock-protected dict, used when DATABASE_URL is unset
- SqlDocumentStore: the ``documents`` table, one transaction per commit

Every document carries a version. ``commit`` applies a batch of writes
atomically and raises VersionConflict if any expected version is stale, so a
caller that loaded several documents either lands all of its changes or none.
"""
from __future__ import annotations

import copy
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from familyquest.core.errors import PersistenceError, VersionConflict

logger = logging.getLogger("familyquest.documents")

USERS = "users"
FAMILIES = "families"
ACHIEVEMENTS = "achievements"
ADVENTURES = "adventures"

DocKey = Tuple[str, str]


@dataclass
class StoredDocument:
    collection: str
    doc_id: str
    version: int
    body: dict


@dataclass
class DocumentWrite:
    collection: str
    doc_id: str
    body: dict
    expected_version: Optional[int] = None  # None means insert


class DocumentStore:
    """Interface shared by the store implementations."""

    def load(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        raise NotImplementedError

    def find_by_family(self, collection: str, family_id: str) -> List[StoredDocument]:
        raise NotImplementedError

    def list(self, collection: str) -> List[StoredDocument]:
        raise NotImplementedError

    def commit(self, writes: List[DocumentWrite]) -> Dict[DocKey, int]:
        raise NotImplementedError

    def insert(self, collection: str, doc_id: str, body: dict) -> StoredDocument:
        versions = self.commit([DocumentWrite(collection, doc_id, body, expected_version=None)])
        return StoredDocument(collection, doc_id, versions[(collection, doc_id)], copy.deepcopy(body))

    def count(self, collection: str) -> int:
        return len(self.list(collection))


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._docs: Dict[DocKey, StoredDocument] = {}
        self._lock = threading.Lock()

    def load(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        with self._lock:
            doc = self._docs.get((collection, doc_id))
            return copy.deepcopy(doc) if doc else None

    def find_by_family(self, collection: str, family_id: str) -> List[StoredDocument]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for (coll, _), doc in self._docs.items()
                if coll == collection and doc.body.get("family_id") == family_id
            ]

    def list(self, collection: str) -> List[StoredDocument]:
        with self._lock:
            return [copy.deepcopy(doc) for (coll, _), doc in self._docs.items() if coll == collection]

    def commit(self, writes: List[DocumentWrite]) -> Dict[DocKey, int]:
        with self._lock:
            # Validate the whole batch before touching anything
            for write in writes:
                key = (write.collection, write.doc_id)
                current = self._docs.get(key)
                if write.expected_version is None:
                    if current is not None:
                        raise VersionConflict(write.collection, write.doc_id, 0)
                elif current is None or current.version != write.expected_version:
                    raise VersionConflict(write.collection, write.doc_id, write.expected_version)

            versions: Dict[DocKey, int] = {}
            for write in writes:
                key = (write.collection, write.doc_id)
                new_version = (write.expected_version or 0) + 1
                self._docs[key] = StoredDocument(
                    write.collection, write.doc_id, new_version, copy.deepcopy(write.body)
                )
                versions[key] = new_version
            return versions

    def clear(self) -> None:
        with self._lock:
            self._docs.clear()


class SqlDocumentStore(DocumentStore):
    def __init__(self, session_factory=None):
        if session_factory is None:
            from familyquest.core.database import get_session_factory
            session_factory = get_session_factory()
        self._session_factory = session_factory

    def load(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        from familyquest.core.database import documents

        row = self._read(
            select(documents).where(
                and_(documents.c.collection == collection, documents.c.doc_id == doc_id)
            )
        )
        return self._to_document(row[0]) if row else None

    def find_by_family(self, collection: str, family_id: str) -> List[StoredDocument]:
        from familyquest.core.database import documents

        rows = self._read(
            select(documents)
            .where(and_(documents.c.collection == collection, documents.c.family_id == family_id))
            .order_by(documents.c.id)
        )
        return [self._to_document(row) for row in rows]

    def list(self, collection: str) -> List[StoredDocument]:
        from familyquest.core.database import documents

        rows = self._read(
            select(documents).where(documents.c.collection == collection).order_by(documents.c.id)
        )
        return [self._to_document(row) for row in rows]

    def commit(self, writes: List[DocumentWrite]) -> Dict[DocKey, int]:
        from familyquest.core.database import documents

        now = datetime.now(timezone.utc)
        versions: Dict[DocKey, int] = {}
        session = self._session_factory()
        try:
            for write in writes:
                key = (write.collection, write.doc_id)
                family_id = write.body.get("family_id")
                if write.expected_version is None:
                    session.execute(
                        insert(documents).values(
                            collection=write.collection,
                            doc_id=write.doc_id,
                            version=1,
                            family_id=family_id,
                            body=write.body,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                    versions[key] = 1
                    continue

                result = session.execute(
                    update(documents)
                    .where(
                        and_(
                            documents.c.collection == write.collection,
                            documents.c.doc_id == write.doc_id,
                            documents.c.version == write.expected_version,
                        )
                    )
                    .values(
                        version=write.expected_version + 1,
                        family_id=family_id,
                        body=write.body,
                        updated_at=now,
                    )
                )
                if result.rowcount != 1:
                    raise VersionConflict(write.collection, write.doc_id, write.expected_version)
                versions[key] = write.expected_version + 1
            session.commit()
            return versions
        except VersionConflict:
            session.rollback()
            raise
        except IntegrityError as exc:
            session.rollback()
            first = writes[0] if writes else None
            raise VersionConflict(
                first.collection if first else "?", first.doc_id if first else "?", 0
            ) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("document commit failed", exc_info=True)
            raise PersistenceError(f"Document commit failed: {exc.__class__.__name__}") from exc
        finally:
            session.close()

    def _read(self, stmt):
        session = self._session_factory()
        try:
            return session.execute(stmt).fetchall()
        except SQLAlchemyError as exc:
            logger.error("document read failed", exc_info=True)
            raise PersistenceError(f"Document read failed: {exc.__class__.__name__}") from exc
        finally:
            session.close()

    @staticmethod
    def _to_document(row) -> StoredDocument:
        return StoredDocument(
            collection=row.collection,
            doc_id=row.doc_id,
            version=row.version,
            body=dict(row.body),
        )


_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    """Process-wide store: SQL when a database is configured, in-memory otherwise."""
    global _store
    if _store is None:
        from familyquest.core.database import get_database_url

        if get_database_url():
            from familyquest.core.database import create_all_tables

            create_all_tables()
            _store = SqlDocumentStore()
        else:
            if os.getenv("ENV", "development").lower() == "production":
                logger.warning("DATABASE_URL not set; using in-memory document store")
            _store = InMemoryDocumentStore()
    return _store


def set_document_store(store: Optional[DocumentStore]) -> None:
    """Swap the process-wide store (tests, composition root)."""
    global _store
    _store = store
