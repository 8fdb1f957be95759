# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
In-process record store for local development and tests.

Mirrors the MongoDBService method surface. Compare-and-set updates hold the
mutex of the document's lock stripe so that, within one process, racing
conditional writes against the same document serialize and at most one of
them succeeds. Documents are replaced wholesale on write, so readers never
observe a partially applied update.
"""

import copy
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.base import generate_object_id, utc_now
from services.mongodb import PaginationResult, SortSpec

logger = logging.getLogger(__name__)

# Fixed pool of document locks; documents hashing to one stripe share it
LOCK_STRIPES = 64

_MISSING = object()


def _compare(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "$exists":
        return (actual is not _MISSING) == bool(expected)
    if actual is _MISSING:
        actual = None
    if operator == "$in":
        return actual in expected
    if operator == "$nin":
        return actual not in expected
    if operator == "$ne":
        return actual != expected
    if actual is None:
        return False
    if operator == "$gt":
        return actual > expected
    if operator == "$gte":
        return actual >= expected
    if operator == "$lt":
        return actual < expected
    if operator == "$lte":
        return actual <= expected
    raise ValueError(f"Unsupported query operator: {operator}")


def matches_query(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Evaluate the subset of MongoDB query syntax used by the services."""
    for key, condition in query.items():
        actual = document.get(key, _MISSING)
        if isinstance(condition, dict) and condition and all(op.startswith("$") for op in condition):
            for operator, expected in condition.items():
                if not _compare(operator, actual, expected):
                    return False
        else:
            value = None if actual is _MISSING else actual
            if value != condition:
                return False
    return True


def _sort_key(field: str) -> Callable[[Dict[str, Any]], Tuple[int, Any]]:
    # Missing and null values sort first, as in MongoDB
    def key(document: Dict[str, Any]) -> Tuple[int, Any]:
        value = document.get(field)
        return (0, 0) if value is None else (1, value)
    return key


class InMemoryStore:
    """Thread-safe in-process store with per-document compare-and-set."""
    
    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._registry_lock = threading.Lock()
        logger.info("In-memory record store initialized")
    
    def _lock_for(self, collection: str, doc_id: str) -> threading.Lock:
        return self._locks[hash((collection, doc_id)) % LOCK_STRIPES]
    
    @staticmethod
    def _public(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if document is None:
            return None
        result = copy.deepcopy(document)
        result["id"] = str(result.pop("_id"))
        return result
    
    def _documents(self, collection: str) -> List[Dict[str, Any]]:
        with self._registry_lock:
            return list(self._collections[collection].values())
    
    def health_check(self) -> Dict[str, Any]:
        return {
            'status': 'healthy',
            'backend': 'memory',
            'collections': len(self._collections)
        }
    
    def create(self, collection: str, document: Dict, user_id: Optional[str] = None) -> str:
        """Insert a document and return its ID."""
        now = utc_now()
        document = copy.deepcopy(document)
        document.setdefault("_id", generate_object_id())
        document.setdefault("createdAt", now)
        document.setdefault("updatedAt", now)
        if document.get("createdBy") is None:
            document["createdBy"] = user_id
        if user_id is not None:
            document["updatedBy"] = user_id
        
        doc_id = str(document["_id"])
        with self._registry_lock:
            if doc_id in self._collections[collection]:
                raise ValueError("Document with this identifier already exists")
            self._collections[collection][doc_id] = document
        
        logger.debug(f"Created document in {collection}: {doc_id}")
        return doc_id
    
    def find_one(self, collection: str, doc_id: str) -> Optional[Dict]:
        with self._registry_lock:
            document = self._collections[collection].get(doc_id)
        return self._public(document)
    
    def find(self, collection: str, filters: Dict = None, sort: SortSpec = None,
             limit: int = 0) -> List[Dict]:
        documents = [doc for doc in self._documents(collection) if matches_query(doc, filters or {})]
        for field, direction in reversed(sort or []):
            documents.sort(key=_sort_key(field), reverse=direction < 0)
        if limit:
            documents = documents[:limit]
        return [self._public(doc) for doc in documents]
    
    def paginate(self, collection: str, page: int = 1, page_size: int = 20,
                 filters: Dict = None, sort: SortSpec = None) -> PaginationResult:
        documents = self.find(collection, filters, sort)
        start = (page - 1) * page_size
        return PaginationResult(documents[start:start + page_size], len(documents), page, page_size)
    
    def count(self, collection: str, filters: Dict = None) -> int:
        return sum(1 for doc in self._documents(collection) if matches_query(doc, filters or {}))
    
    def compare_and_set(self, collection: str, doc_id: str, expected: Dict,
                        updates: Dict, user_id: Optional[str] = None) -> Optional[Dict]:
        """Apply ``updates`` only if the document still matches ``expected``."""
        with self._lock_for(collection, doc_id):
            current = self._collections[collection].get(doc_id)
            if current is None or not matches_query(current, expected):
                logger.info(f"Conditional update of {doc_id} in {collection} matched nothing")
                return None
            
            replacement = {**copy.deepcopy(current), **copy.deepcopy(updates)}
            if "updatedAt" not in updates:
                replacement["updatedAt"] = utc_now()
            if user_id is not None:
                replacement["updatedBy"] = user_id
            self._collections[collection][doc_id] = replacement
            return self._public(replacement)
    
    def update(self, collection: str, doc_id: str, updates: Dict, user_id: Optional[str] = None) -> bool:
        """Unconditionally update a document by ID."""
        return self.compare_and_set(collection, doc_id, {}, updates, user_id) is not None
    
    def bulk_update(self, collection: str, updates: List[Tuple[str, Dict]]) -> int:
        """Apply many independent updates; returns how many documents matched."""
        return sum(1 for doc_id, fields in updates if self.update(collection, doc_id, fields))
    
    def create_indexes(self) -> None:
        logger.debug("In-memory store needs no indexes")
