"""
Snapshot agent - orchestrates one backup cycle.

Workflow:
1. Renew the Vault credential if it is due
2. Check that the Vault node is the raft leader (skip the cycle otherwise)
3. Export the raft snapshot
4. Write the snapshot to every configured destination

Authentication, leadership and export failures propagate to the caller and
are fatal. Destination failures are recorded per writer and never stop the
remaining writers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..auth import AuthError, CredentialStore
from ..vault import FetchError, LeadershipQueryError, VaultGateway
from .storage import WriteResult


logger = logging.getLogger(__name__)

# Errors after which no further cycle can be trusted
FATAL_ERRORS = (AuthError, LeadershipQueryError, FetchError)


@dataclass
class CycleResult:
    """Outcome of one backup cycle."""

    skipped: bool = False
    timestamp: Optional[int] = None
    results: List[WriteResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[WriteResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[WriteResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


class SnapshotAgent:
    """
    Runs backup cycles for one Vault cluster.
    """

    def __init__(self, credentials: CredentialStore, vault: VaultGateway, writers: list):
        """
        Initialize snapshot agent.

        Args:
            credentials: Store holding the Vault credential
            vault: Gateway used for leadership checks and snapshot export
            writers: Destinations receiving every snapshot
        """
        self.credentials = credentials
        self.vault = vault
        self.writers = writers

    def run_cycle(self, now: Optional[datetime] = None) -> CycleResult:
        """
        Execute one backup cycle.

        Args:
            now: Current time (defaults to the wall clock)

        Returns:
            CycleResult with the per-destination outcome

        Raises:
            AuthError: If the Vault credential cannot be renewed
            LeadershipQueryError: If leader status cannot be determined
            FetchError: If the snapshot cannot be exported
        """
        if self.credentials.needs_renewal(now):
            self.credentials.renew(now)

        if not self.vault.is_leader():
            logger.info("Not running on leader node, skipping.")
            return CycleResult(skipped=True)

        blob = self.vault.fetch_snapshot()

        result = CycleResult(timestamp=blob.timestamp)
        for writer in self.writers:
            result.results.append(self._dispatch(writer, blob))

        logger.info(
            f"Snapshot cycle complete. "
            f"Succeeded: {len(result.succeeded)}, "
            f"Failed: {len(result.failed)}"
        )
        return result

    def _dispatch(self, writer, blob) -> WriteResult:
        try:
            result = writer.write_snapshot(blob)
        except Exception as e:
            logger.exception(f"Unexpected error in {writer.name} writer")
            result = WriteResult(writer.name, '', False, error=str(e))

        _log_write_result(result)
        return result


def _log_write_result(result: WriteResult):
    if result.success:
        logger.info(f"Successfully created {result.destination} snapshot to {result.path}")
        if result.deleted:
            logger.info(f"Removed {len(result.deleted)} old {result.destination} snapshot(s)")
    else:
        logger.error(f"Failed to generate {result.destination} snapshot to {result.path}: {result.error}")
