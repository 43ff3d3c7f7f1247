"""
Persistence backends for the record store

A backend is a key-value blob store: ``get(key)`` returns the stored bytes
or None, ``set(key, blob)`` overwrites. The store keeps its whole state as
one snapshot under one key.
"""

import os
from typing import Dict, Optional

from pymongo import MongoClient

from app_logger import get_logger
from config import Config

logger = get_logger("database")


class MemoryBackend:
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self.blobs.get(key)

    def set(self, key: str, blob: bytes) -> None:
        self.blobs[key] = bytes(blob)


class FileBackend:
    """One file per key inside a directory, the local-storage analogue."""

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not os.path.isfile(path):
            return None
        with open(path, "rb") as f:
            return f.read()

    def set(self, key: str, blob: bytes) -> None:
        os.makedirs(self.directory, exist_ok=True)
        path = self._path(key)
        tmp = path + ".tmp"
        with open(tmp, "wb") as f:
            f.write(blob)
        os.replace(tmp, path)


class MongoBackend:
    """Snapshot documents in a MongoDB collection, keyed by ``_id``."""

    def __init__(self, collection):
        self.collection = collection

    @classmethod
    def from_url(cls, url: str, database: str, collection: str = "snapshot"):
        client = MongoClient(url)
        return cls(client[database][collection])

    def get(self, key: str) -> Optional[bytes]:
        doc = self.collection.find_one({"_id": key})
        if not doc:
            return None
        return bytes(doc["blob"])

    def set(self, key: str, blob: bytes) -> None:
        self.collection.replace_one({"_id": key}, {"_id": key, "blob": bytes(blob)}, upsert=True)


def get_backend():
    if Config.DATABASE_URL:
        logger.info("Using MongoDB snapshot backend (database %s)", Config.DATABASE_NAME)
        return MongoBackend.from_url(Config.DATABASE_URL, Config.DATABASE_NAME)
    logger.info("Using file snapshot backend in %s", Config.STORE_DIR)
    return FileBackend(Config.STORE_DIR)
