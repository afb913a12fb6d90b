"""
Storage layer for the search crawler.
"""

from .database import Backend, DatabaseManager, DatabaseError, FileStorageBackend

__all__ = ['Backend', 'DatabaseManager', 'DatabaseError', 'FileStorageBackend']
