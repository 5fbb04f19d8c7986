"""
MongoDB access for the catalog.

One ``Repository`` wraps one collection and maps documents to the pydantic
schema for that collection (``_id`` becomes the string ``id``). Handlers never
reach for a global collection: they get a ``Repositories`` container, normally
through the ``get_repositories`` FastAPI dependency.
"""

import threading
from datetime import datetime
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import get_logger, settings
from schemas import Author, Book, BookInstance, Genre

logger = get_logger("database")

T = TypeVar("T", bound=BaseModel)

_client: Optional[MongoClient] = None
_client_lock = threading.Lock()


def get_client() -> MongoClient:
    global _client
    with _client_lock:
        if _client is None:
            _client = MongoClient(settings.database_url)
            logger.info("Connected MongoClient to %s", settings.database_name)
        return _client


def get_database() -> Database:
    return get_client()[settings.database_name]


def close_client() -> None:
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None


def to_object_id(id_str: Optional[str]) -> Optional[ObjectId]:
    # ObjectId(None) would mint a fresh id
    if not id_str:
        return None
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        logger.debug("Ignoring malformed id %r", id_str)
        return None


def collection_name(model: Type[BaseModel]) -> str:
    return model.__name__.lower()


class Repository(Generic[T]):
    def __init__(self, db: Database, model: Type[T]):
        self.model = model
        self.collection = db[collection_name(model)]

    def _load(self, doc: Optional[dict], partial: bool = False) -> Optional[T]:
        if not doc:
            return None
        d = {**doc}
        d["id"] = str(d.pop("_id"))
        if partial:
            # Projected documents miss required fields; skip validation.
            return self.model.model_construct(**d)
        return self.model.model_validate(d)

    def _dump(self, entity: T) -> Dict[str, Any]:
        return entity.model_dump(exclude={"id"})

    def find(
        self,
        filter_dict: Optional[Mapping[str, Any]] = None,
        projection: Optional[Sequence[str]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
    ) -> List[T]:
        cursor = self.collection.find(dict(filter_dict or {}), list(projection) if projection else None)
        if sort:
            cursor = cursor.sort(list(sort))
        return [self._load(doc, partial=bool(projection)) for doc in cursor]

    def find_one(self, filter_dict: Mapping[str, Any]) -> Optional[T]:
        return self._load(self.collection.find_one(dict(filter_dict)))

    def find_by_id(self, id_str: Optional[str]) -> Optional[T]:
        oid = to_object_id(id_str)
        if oid is None:
            return None
        return self._load(self.collection.find_one({"_id": oid}))

    def count(self, filter_dict: Optional[Mapping[str, Any]] = None) -> int:
        return self.collection.count_documents(dict(filter_dict or {}))

    def insert(self, entity: T) -> str:
        data = self._dump(entity)
        now = datetime.utcnow()
        data["created_at"] = now
        data["updated_at"] = now
        result = self.collection.insert_one(data)
        entity.id = str(result.inserted_id)
        return entity.id

    def replace(self, id_str: str, entity: T) -> bool:
        oid = to_object_id(id_str)
        if oid is None:
            return False
        existing = self.collection.find_one({"_id": oid}, ["created_at"])
        if existing is None:
            return False
        data = self._dump(entity)
        data["created_at"] = existing.get("created_at")
        data["updated_at"] = datetime.utcnow()
        result = self.collection.replace_one({"_id": oid}, data)
        if result.matched_count == 0:
            return False
        entity.id = id_str
        return True

    def delete(self, id_str: str) -> bool:
        oid = to_object_id(id_str)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count > 0

    def populate(self, entity: BaseModel, field: str) -> BaseModel:
        """Return a copy of ``entity`` with the id(s) in ``field`` replaced by
        documents from this repository. Dangling references become ``None``
        (single reference) or are dropped (list of references)."""
        ref = getattr(entity, field)
        if isinstance(ref, list):
            oids = [oid for oid in (to_object_id(r) for r in ref) if oid is not None]
            value = [self._load(doc) for doc in self.collection.find({"_id": {"$in": oids}})] if oids else []
        else:
            value = self.find_by_id(ref)
        return entity.model_copy(update={field: value})


class Repositories:
    def __init__(self, db: Database):
        self.authors: Repository[Author] = Repository(db, Author)
        self.genres: Repository[Genre] = Repository(db, Genre)
        self.books: Repository[Book] = Repository(db, Book)
        self.bookinstances: Repository[BookInstance] = Repository(db, BookInstance)


def get_repositories() -> Repositories:
    return Repositories(get_database())
