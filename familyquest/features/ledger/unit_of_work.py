"""
Unit of work over the document store.

Loads documents into pydantic models, keeps one instance per document
(identity map) and remembers the version each was read at. ``commit`` writes
every changed document in one atomic batch; a stale version anywhere raises
VersionConflict and nothing is written.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from familyquest.core.documents import (
    ACHIEVEMENTS,
    ADVENTURES,
    FAMILIES,
    USERS,
    DocKey,
    DocumentStore,
    DocumentWrite,
    StoredDocument,
)
from familyquest.core.errors import InvalidStateError, NotFoundError
from familyquest.models.achievement import Achievement
from familyquest.models.adventure import Adventure
from familyquest.models.family import Family
from familyquest.models.user import User

M = TypeVar("M", bound=BaseModel)


def dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json")


class UnitOfWork:
    def __init__(self, store: DocumentStore):
        self._store = store
        # key -> (version read, body as read, live model); version None means new
        self._tracked: Dict[DocKey, Tuple[Optional[int], dict, BaseModel]] = {}
        self._catalog: Dict[DocKey, Optional[BaseModel]] = {}

    # Tracked (writable) documents ------------------------------------
    def get_user(self, user_id: str) -> User:
        user = self._load(USERS, user_id, User)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_family(self, family_id: str) -> Family:
        family = self._load(FAMILIES, family_id, Family)
        if family is None:
            raise NotFoundError("Family not found")
        return family

    def family_members(self, family_id: str) -> List[User]:
        """All users whose family_id matches, sharing instances already loaded."""
        members: List[User] = []
        seen = set()
        for doc in self._store.find_by_family(USERS, family_id):
            members.append(self._adopt(doc, User))
            seen.add(doc.doc_id)
        # Users loaded earlier in this unit and moved into the family in memory
        for (collection, doc_id), (_, _, model) in self._tracked.items():
            if collection == USERS and doc_id not in seen and getattr(model, "family_id", None) == family_id:
                members.append(model)
        return members

    def all_families(self) -> List[Family]:
        return [self._adopt(doc, Family) for doc in self._store.list(FAMILIES)]

    def add(self, collection: str, model: M) -> M:
        """Stage a new document. It is inserted by the next commit."""
        key = (collection, model.id)
        if key in self._tracked or self._store.load(collection, model.id) is not None:
            raise InvalidStateError(f"{collection}/{model.id} already exists")
        self._tracked[key] = (None, {}, model)
        return model

    # Read-only catalog -----------------------------------------------
    def find_achievement(self, achievement_id: str) -> Optional[Achievement]:
        return self._catalog_item(ACHIEVEMENTS, achievement_id, Achievement)

    def get_adventure(self, adventure_id: str) -> Adventure:
        adventure = self._catalog_item(ADVENTURES, adventure_id, Adventure)
        if adventure is None:
            raise NotFoundError("Adventure not found")
        return adventure

    def count(self, collection: str) -> int:
        return self._store.count(collection)

    # Commit ----------------------------------------------------------
    def pending_writes(self) -> List[DocumentWrite]:
        writes = []
        for (collection, doc_id), (version, original, model) in self._tracked.items():
            body = dump(model)
            if body != original:
                writes.append(DocumentWrite(collection, doc_id, body, expected_version=version))
        return writes

    def commit(self) -> int:
        """Write changed documents atomically. Returns how many were written."""
        writes = self.pending_writes()
        if not writes:
            return 0
        versions = self._store.commit(writes)
        for write in writes:
            key = (write.collection, write.doc_id)
            _, _, model = self._tracked[key]
            self._tracked[key] = (versions[key], write.body, model)
        return len(writes)

    # Internal helpers ------------------------------------------------
    def _load(self, collection: str, doc_id: str, model_cls: Type[M]) -> Optional[M]:
        key = (collection, doc_id)
        if key in self._tracked:
            return self._tracked[key][2]  # type: ignore[return-value]
        doc = self._store.load(collection, doc_id)
        if doc is None:
            return None
        return self._adopt(doc, model_cls)

    def _adopt(self, doc: StoredDocument, model_cls: Type[M]) -> M:
        key = (doc.collection, doc.doc_id)
        if key in self._tracked:
            return self._tracked[key][2]  # type: ignore[return-value]
        model = model_cls.model_validate(doc.body)
        # Compare against the normalized dump so defaults filled on load are not "changes"
        self._tracked[key] = (doc.version, dump(model), model)
        return model

    def _catalog_item(self, collection: str, doc_id: str, model_cls: Type[M]) -> Optional[M]:
        key = (collection, doc_id)
        if key not in self._catalog:
            doc = self._store.load(collection, doc_id)
            self._catalog[key] = model_cls.model_validate(doc.body) if doc else None
        return self._catalog[key]  # type: ignore[return-value]
