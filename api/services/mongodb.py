# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB record store with conditional writes and connection pooling.
"""

import os
import logging
from typing import List, Dict, Optional, Any, Tuple
from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument, UpdateOne
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure, 
    ServerSelectionTimeoutError,
    DuplicateKeyError,
    PyMongoError
)

from models.base import utc_now

logger = logging.getLogger(__name__)

SortSpec = List[Tuple[str, int]]


class StoreError(Exception):
    """Raised when the record store fails; the message is safe to log only."""
    pass


class PaginationResult:
    """Result container for paginated queries."""
    
    def __init__(self, items: List[Dict], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


def _with_id(document: Optional[Dict]) -> Optional[Dict]:
    """Expose ``_id`` as ``id`` for JSON serialization."""
    if document is not None and "_id" in document:
        document["id"] = str(document.pop("_id"))
    return document


def _add_timestamps(document: Dict, user_id: Optional[str], is_update: bool = False) -> Dict:
    """Add creation and update audit fields to a document."""
    now = utc_now()
    
    if not is_update:
        document.setdefault("createdAt", now)
        if document.get("createdBy") is None:
            document["createdBy"] = user_id
    
    document.setdefault("updatedAt", now)
    if user_id is not None:
        document["updatedBy"] = user_id
    
    return document


class MongoDBService:
    """MongoDB record store with atomic compare-and-set updates."""
    
    def __init__(self, connection_string: str = None, database_name: str = None, client: MongoClient = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI', 
            'mongodb://localhost:27017/relief_verification'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'relief_verification')
        self._client: Optional[MongoClient] = client
        self._database: Optional[Database] = None
        
        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))
        
        logger.info(f"MongoDB service initialized for database: {self.database_name}")
    
    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True
                )
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise StoreError("Record store unavailable") from e
        
        return self._client
    
    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database
    
    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]
    
    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")
    
    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except (StoreError, PyMongoError) as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'database': self.database_name
            }
    
    # CRUD operations
    
    def create(self, collection: str, document: Dict, user_id: Optional[str] = None) -> str:
        """Insert a document and return its ID."""
        try:
            document = _add_timestamps(dict(document), user_id)
            result = self.get_collection(collection).insert_one(document)
            
            logger.info(f"Created document in {collection}: {result.inserted_id}")
            return str(result.inserted_id)
            
        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise ValueError("Document with this identifier already exists")
        except PyMongoError as e:
            logger.error(f"Failed to create document in {collection}: {e}")
            raise StoreError(f"Failed to create document in {collection}") from e
    
    def find_one(self, collection: str, doc_id: str) -> Optional[Dict]:
        """Find a single document by ID."""
        try:
            document = self.get_collection(collection).find_one({"_id": doc_id})
            if document is None:
                logger.debug(f"Document {doc_id} not found in {collection}")
            return _with_id(document)
        except PyMongoError as e:
            logger.error(f"Failed to find document {doc_id} in {collection}: {e}")
            raise StoreError(f"Failed to read from {collection}") from e
    
    def find(self, collection: str, filters: Dict = None, sort: SortSpec = None,
             limit: int = 0) -> List[Dict]:
        """Find documents matching a query."""
        try:
            cursor = self.get_collection(collection).find(filters or {})
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            documents = [_with_id(doc) for doc in cursor]
            
            logger.debug(f"Found {len(documents)} documents in {collection}")
            return documents
        except PyMongoError as e:
            logger.error(f"Failed to find documents in {collection}: {e}")
            raise StoreError(f"Failed to read from {collection}") from e
    
    def paginate(self, collection: str, page: int = 1, page_size: int = 20,
                 filters: Dict = None, sort: SortSpec = None) -> PaginationResult:
        """Paginate documents with sorting and filtering."""
        try:
            query = filters or {}
            collection_obj = self.get_collection(collection)
            
            total = collection_obj.count_documents(query)
            cursor = collection_obj.find(query)
            if sort:
                cursor = cursor.sort(sort)
            documents = [_with_id(doc) for doc in cursor.skip((page - 1) * page_size).limit(page_size)]
            
            logger.debug(f"Paginated {len(documents)} documents from {collection} (page {page})")
            return PaginationResult(documents, total, page, page_size)
        except PyMongoError as e:
            logger.error(f"Failed to paginate documents in {collection}: {e}")
            raise StoreError(f"Failed to read from {collection}") from e
    
    def count(self, collection: str, filters: Dict = None) -> int:
        """Count documents matching a query."""
        try:
            return self.get_collection(collection).count_documents(filters or {})
        except PyMongoError as e:
            logger.error(f"Failed to count documents in {collection}: {e}")
            raise StoreError(f"Failed to read from {collection}") from e
    
    def compare_and_set(self, collection: str, doc_id: str, expected: Dict,
                        updates: Dict, user_id: Optional[str] = None) -> Optional[Dict]:
        """
        Atomically apply ``updates`` only if the document still matches ``expected``.
        
        Args:
            collection: Collection name
            doc_id: Document ID
            expected: Field values the document must currently hold
            updates: Fields to set
            user_id: Actor recorded as updatedBy
            
        Returns:
            The updated document, or None when nothing matched
        """
        query = {**expected, "_id": doc_id}
        try:
            updates = _add_timestamps(dict(updates), user_id, is_update=True)
            document = self.get_collection(collection).find_one_and_update(
                query,
                {"$set": updates},
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            logger.error(f"Conditional update of {doc_id} in {collection} failed: {e}")
            raise StoreError(f"Failed to update {collection}") from e
        
        if document is None:
            logger.info(f"Conditional update of {doc_id} in {collection} matched nothing")
        return _with_id(document)
    
    def update(self, collection: str, doc_id: str, updates: Dict, user_id: Optional[str] = None) -> bool:
        """Unconditionally update a document by ID."""
        try:
            updates = _add_timestamps(dict(updates), user_id, is_update=True)
            result = self.get_collection(collection).update_one({"_id": doc_id}, {"$set": updates})
        except PyMongoError as e:
            logger.error(f"Failed to update document {doc_id} in {collection}: {e}")
            raise StoreError(f"Failed to update {collection}") from e
        
        if result.matched_count == 0:
            logger.warning(f"No document updated for {doc_id} in {collection}")
            return False
        return True
    
    def bulk_update(self, collection: str, updates: List[Tuple[str, Dict]]) -> int:
        """Apply many independent ``$set`` updates in one round trip."""
        if not updates:
            return 0
        operations = [UpdateOne({"_id": doc_id}, {"$set": fields}) for doc_id, fields in updates]
        try:
            result = self.get_collection(collection).bulk_write(operations, ordered=False)
        except PyMongoError as e:
            logger.error(f"Bulk update of {len(operations)} documents in {collection} failed: {e}")
            raise StoreError(f"Failed to update {collection}") from e
        
        logger.info(f"Bulk updated {result.matched_count} documents in {collection}")
        return result.matched_count
    
    # Index management
    
    def create_indexes(self) -> None:
        """Create indexes backing the queue, analytics and audit queries."""
        try:
            logger.info("Creating MongoDB indexes...")
            
            records = self.get_collection("records")
            records.create_index([("status", ASCENDING), ("priorityRank", DESCENDING), ("createdAt", ASCENDING)])
            records.create_index([("entityId", ASCENDING), ("status", ASCENDING)])
            records.create_index([("donorId", ASCENDING), ("createdAt", DESCENDING)])
            records.create_index([("incidentId", ASCENDING), ("kind", ASCENDING)])
            records.create_index([("status", ASCENDING), ("verifiedAt", DESCENDING)])
            
            commitments = self.get_collection("commitments")
            commitments.create_index([("donorId", ASCENDING), ("commitmentDate", DESCENDING)])
            
            donors = self.get_collection("donors")
            donors.create_index([("isActive", ASCENDING), ("leaderboardRank", ASCENDING)])
            
            audit_logs = self.get_collection("audit_logs")
            audit_logs.create_index([("resourceId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("actor", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")
            
            logger.info("MongoDB indexes created successfully")
            
        except PyMongoError as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise StoreError("Failed to create indexes") from e


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
        _mongodb_service = None
