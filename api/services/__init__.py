# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Record store, coordination and workflow services.
"""

from .mongodb import MongoDBService, PaginationResult, StoreError, get_mongodb_service, close_mongodb_connection
from .memory_store import InMemoryStore

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "StoreError",
    "get_mongodb_service",
    "close_mongodb_connection",
    "InMemoryStore"
]
