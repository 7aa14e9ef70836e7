"""
Retention policy for raft snapshots.

Keeps the newest ``retain`` snapshots at a destination. Only artifacts that
follow the snapshot naming convention are ever considered, so unrelated files
living next to the snapshots are never touched.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List


SNAPSHOT_PREFIX = 'raft_snapshot-'
SNAPSHOT_SUFFIX = '.snap'

_SNAPSHOT_NAME = re.compile(r'^raft_snapshot-\d+\.snap$')


@dataclass(frozen=True)
class RetentionCandidate:
    """An existing snapshot artifact at a destination."""

    name: str
    modified_at: int  # Unix ns


def snapshot_filename(timestamp: int) -> str:
    """Return the file/object name for a snapshot taken at ``timestamp`` (Unix ns)."""
    return f"{SNAPSHOT_PREFIX}{timestamp}{SNAPSHOT_SUFFIX}"


def is_snapshot_name(name: str) -> bool:
    return bool(_SNAPSHOT_NAME.match(name))


def _age_order(candidate: RetentionCandidate):
    return (candidate.modified_at, candidate.name)


def select_for_deletion(candidates: Iterable[RetentionCandidate], retain: int) -> List[RetentionCandidate]:
    """
    Select the snapshots to delete so that only the newest ``retain`` remain.

    Args:
        candidates: Artifacts currently present at the destination
        retain: Number of snapshots to keep; ``<= 0`` keeps everything

    Returns:
        Candidates to delete, oldest first
    """
    matched = [c for c in candidates if is_snapshot_name(c.name)]

    if retain <= 0 or len(matched) <= retain:
        return []

    matched.sort(key=_age_order)
    return matched[:len(matched) - retain]
