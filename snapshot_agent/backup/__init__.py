"""
Backup module for the snapshot agent.

This module handles the snapshot backup functionality including:
- Cycle orchestration
- Storage (local directory and S3)
- Retention policy enforcement
"""

from .executor import SnapshotAgent, CycleResult
from .storage import LocalDirectoryWriter, ObjectStoreWriter, WriteResult, create_writers
from .retention import RetentionCandidate, select_for_deletion

__all__ = [
    'SnapshotAgent',
    'CycleResult',
    'LocalDirectoryWriter',
    'ObjectStoreWriter',
    'WriteResult',
    'create_writers',
    'RetentionCandidate',
    'select_for_deletion'
]
