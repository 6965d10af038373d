"""
MongoDB access for Mangrove Watch

`db` is None when DATABASE_URL / DATABASE_NAME are not set; the service then
runs on the in-memory fallback store. Each collection is reached through a
narrow store class so call sites never touch the driver directly.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import gridfs
from gridfs.errors import NoFile
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    PyMongoError,
)

import config
from errors import (
    BackendError,
    BackendUnavailable,
    ConnectivityError,
    MissingSchemaError,
    PermissionDeniedError,
)
from schemas import Profile, Report

logger = logging.getLogger(__name__)

PROFILES = "profiles"
REPORTS = "reports"

# MongoDB "Unauthorized" / "AuthenticationFailed" codes
_PERMISSION_CODES = {13, 18}


def _connect():
    if not (config.DATABASE_URL and config.DATABASE_NAME):
        logger.warning("DATABASE_URL/DATABASE_NAME not set, running on the fallback store only")
        return None
    client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=config.DATABASE_TIMEOUT_MS, tz_aware=True)
    return client[config.DATABASE_NAME]


db = _connect()


@contextmanager
def backend_call(what: str) -> Iterator[None]:
    """Convert driver exceptions raised inside the block into errors.* classes."""
    try:
        yield
    except ConnectionFailure as e:
        raise ConnectivityError(f"{what}: connection failed: {e}") from e
    except OperationFailure as e:
        if e.code in _PERMISSION_CODES:
            raise PermissionDeniedError(f"{what}: permission denied: {e}") from e
        raise BackendError(f"{what}: {e}") from e
    except PyMongoError as e:
        raise BackendError(f"{what}: {e}") from e


def _from_doc(doc: dict) -> dict:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _model(cls, doc: Optional[dict]):
    """Build cls from a stored document; rows that fail validation count as backend errors."""
    if not doc:
        return None
    try:
        return cls(**_from_doc(doc))
    except ValidationError as e:
        raise BackendError(f"malformed {cls.__name__.lower()} row {doc.get('_id')}: {e}") from e


class _CollectionStore:
    collection_name = ""

    def __init__(self, database):
        self.database = database

    @property
    def collection(self):
        if self.database is None:
            raise BackendUnavailable("Database not configured")
        return self.database[self.collection_name]

    def exists(self) -> bool:
        with backend_call(f"inspect {self.collection_name}"):
            return self.collection_name in self.collection.database.list_collection_names()


class ProfileStore(_CollectionStore):
    """profiles: create / get / update / list-by-points / count"""
    collection_name = PROFILES

    def create(self, profile: Profile) -> Profile:
        data = profile.model_dump()
        data["_id"] = data.pop("id")
        with backend_call("insert profile"):
            try:
                self.collection.insert_one(data)
            except DuplicateKeyError:
                raise BackendError(f"profile {profile.id} already exists")
        return profile

    def get(self, profile_id: str) -> Optional[Profile]:
        with backend_call("select profile"):
            doc = self.collection.find_one({"_id": profile_id})
        return _model(Profile, doc)

    def update(self, profile_id: str, fields: Dict[str, Any]) -> Optional[Profile]:
        fields = dict(fields, updated_at=datetime.now(timezone.utc))
        with backend_call("update profile"):
            doc = self.collection.find_one_and_update(
                {"_id": profile_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
        return _model(Profile, doc)

    def increment_points(self, profile_id: str, points: int) -> Optional[Profile]:
        with backend_call("award points"):
            doc = self.collection.find_one_and_update(
                {"_id": profile_id},
                {"$inc": {"points": points}, "$set": {"updated_at": datetime.now(timezone.utc)}},
                return_document=ReturnDocument.AFTER,
            )
        return _model(Profile, doc)

    def list(self, order_by: str = "points", descending: bool = True, limit: Optional[int] = None) -> List[Profile]:
        with backend_call("select profiles"):
            cursor = self.collection.find({}).sort(order_by, DESCENDING if descending else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [_model(Profile, d) for d in cursor]

    def count(self) -> int:
        with backend_call("count profiles"):
            return self.collection.count_documents({})


class ReportStore(_CollectionStore):
    """reports: create / get / update / list-by-equality / count"""
    collection_name = REPORTS

    def create(self, report: Report) -> Report:
        data = report.model_dump(exclude={"user_profile"})
        data["_id"] = data.pop("id")
        with backend_call("insert report"):
            self.collection.insert_one(data)
        return report

    def get(self, report_id: str) -> Optional[Report]:
        with backend_call("select report"):
            doc = self.collection.find_one({"_id": report_id})
        return _model(Report, doc)

    def update(self, report_id: str, fields: Dict[str, Any]) -> Optional[Report]:
        fields = dict(fields, updated_at=datetime.now(timezone.utc))
        with backend_call("update report"):
            doc = self.collection.find_one_and_update(
                {"_id": report_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
        return _model(Report, doc)

    def list(self, where: Optional[Dict[str, Any]] = None, order_by: str = "created_at",
             descending: bool = True, limit: Optional[int] = None) -> List[Report]:
        with backend_call("select reports"):
            cursor = self.collection.find(where or {}).sort(order_by, DESCENDING if descending else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [_model(Report, d) for d in cursor]

    def count(self, where: Optional[Dict[str, Any]] = None) -> int:
        with backend_call("count reports"):
            return self.collection.count_documents(where or {})


class PhotoStorage:
    """Public object bucket backed by GridFS"""

    def __init__(self, database, bucket_name: str = config.PHOTO_BUCKET):
        self.database = database
        self.bucket_name = bucket_name

    @property
    def bucket(self) -> gridfs.GridFSBucket:
        if self.database is None:
            raise BackendUnavailable("Database not configured")
        return gridfs.GridFSBucket(self.database, bucket_name=self.bucket_name)

    def public_url(self, filename: str) -> str:
        return f"{config.PUBLIC_URL}/storage/{self.bucket_name}/{filename}"

    def upload(self, filename: str, data: bytes, content_type: Optional[str] = None) -> str:
        with backend_call(f"upload to {self.bucket_name}"):
            self.bucket.upload_from_stream(filename, data, metadata={"content_type": content_type})
        return self.public_url(filename)

    def download(self, filename: str) -> Optional[Tuple[bytes, Optional[str]]]:
        with backend_call(f"download from {self.bucket_name}"):
            try:
                stream = self.bucket.open_download_stream_by_name(filename)
            except NoFile:
                return None
            content_type = (stream.metadata or {}).get("content_type")
            return stream.read(), content_type

    def exists(self) -> bool:
        if self.database is None:
            raise BackendUnavailable("Database not configured")
        with backend_call(f"inspect {self.bucket_name}"):
            return f"{self.bucket_name}.files" in self.database.list_collection_names()


class Backend:
    """
    Everything the service reaches remotely: the two tables, the photo
    bucket and named procedures.
    """

    def __init__(self, profiles, reports, storage, procedures: Optional[Dict[str, Callable[..., Any]]] = None,
                 configured: bool = True):
        self.profiles = profiles
        self.reports = reports
        self.storage = storage
        self.procedures = dict(procedures or {})
        self.configured = configured

    def rpc(self, name: str, **params):
        if not self.configured:
            raise BackendUnavailable("Database not configured")
        fn = self.procedures.get(name)
        if fn is None:
            raise MissingSchemaError(f"function {name} does not exist")
        return fn(**params)


def mongo_backend(database=None) -> Backend:
    database = db if database is None else database
    profiles = ProfileStore(database)
    backend = Backend(
        profiles=profiles,
        reports=ReportStore(database),
        storage=PhotoStorage(database),
        configured=database is not None,
    )

    def award_points(user_id: str, points_to_add: int):
        return profiles.increment_points(user_id, points_to_add)

    backend.procedures["award_points"] = award_points
    return backend
