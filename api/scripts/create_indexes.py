#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Script to create the MongoDB indexes behind the queue and analytics queries.

Run with the package installed (``pip install -e .``) and MONGODB_URI /
MONGODB_DATABASE set.
"""

import sys
import logging

from services.mongodb import StoreError, close_mongodb_connection, get_mongodb_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main() -> int:
    """Create MongoDB indexes; returns the process exit code."""
    try:
        logger.info("Starting MongoDB index creation...")
        mongodb_service = get_mongodb_service()
        
        health = mongodb_service.health_check()
        if health['status'] != 'healthy':
            logger.error(f"MongoDB is not healthy: {health}")
            return 1
        
        logger.info(f"Connected to MongoDB database: {health['database']}")
        mongodb_service.create_indexes()
        logger.info("MongoDB indexes created successfully!")
        return 0
    except StoreError as e:
        logger.error(f"Failed to create indexes: {e}")
        return 1
    finally:
        close_mongodb_connection()


if __name__ == "__main__":
    sys.exit(main())
