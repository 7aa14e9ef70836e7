"""
Vault API access for the agent.

VaultGateway answers two questions on behalf of a cycle: is the node we
talk to the raft leader, and what is the current raft snapshot. The
credential is always taken from the CredentialStore right before a call.
"""

import logging
import time
from dataclasses import dataclass

import hvac
from hvac.exceptions import VaultError
from requests.exceptions import RequestException

from .auth import CredentialStore
from .config import Configuration


logger = logging.getLogger(__name__)


class LeadershipQueryError(Exception):
    """Raised when the leader status of the cluster cannot be determined."""
    pass


class FetchError(Exception):
    """Raised when a raft snapshot cannot be exported."""
    pass


@dataclass(frozen=True)
class SnapshotBlob:
    """Raw raft snapshot bytes and their creation instant (Unix ns)."""

    data: bytes
    timestamp: int

    @property
    def size(self) -> int:
        return len(self.data)


def create_vault_client(config: Configuration) -> hvac.Client:
    """
    Create an unauthenticated hvac client for the configured Vault address.

    Args:
        config: Agent configuration

    Returns:
        hvac.Client bounded by the configured timeout
    """
    if config.tls_skip_verify:
        verify = False
    elif config.ca_cert:
        verify = config.ca_cert
    else:
        verify = True

    return hvac.Client(url=config.address, timeout=config.timeout, verify=verify)


class VaultGateway:
    """Leadership checks and snapshot export against one Vault node."""

    def __init__(self, client: hvac.Client, credentials: CredentialStore):
        self.client = client
        self.credentials = credentials
        self._last_timestamp = 0

    def _authorized_client(self) -> hvac.Client:
        self.client.token = self.credentials.token
        return self.client

    def is_leader(self) -> bool:
        """
        Ask Vault whether this node is the active raft leader.

        Always performs exactly one query.

        Raises:
            LeadershipQueryError: If the leader status cannot be read
        """
        try:
            status = self._authorized_client().sys.read_leader_status()
        except (VaultError, RequestException) as e:
            raise LeadershipQueryError(f"Unable to determine leader instance: {e}") from e

        if not isinstance(status, dict) or 'is_self' not in status:
            raise LeadershipQueryError(f"Unexpected leader status response: {status!r}")

        return bool(status['is_self'])

    def next_timestamp(self) -> int:
        """Return a Unix ns timestamp strictly greater than the previous one."""
        now = time.time_ns()
        if now <= self._last_timestamp:
            now = self._last_timestamp + 1
        self._last_timestamp = now
        return now

    def fetch_snapshot(self) -> SnapshotBlob:
        """
        Export the current raft snapshot.

        Returns:
            SnapshotBlob with the raw snapshot bytes

        Raises:
            FetchError: If the export fails or returns no data
        """
        try:
            response = self._authorized_client().sys.take_raft_snapshot()
        except (VaultError, RequestException) as e:
            raise FetchError(f"Unable to generate snapshot: {e}") from e

        # hvac hands back the raw requests.Response for non-JSON bodies
        status_code = getattr(response, 'status_code', None)
        data = getattr(response, 'content', None)

        if status_code is not None and not 200 <= status_code < 300:
            raise FetchError(f"Unable to generate snapshot: HTTP {status_code}")
        if not isinstance(data, bytes) or not data:
            raise FetchError("Unable to generate snapshot: empty response from Vault")

        blob = SnapshotBlob(data=data, timestamp=self.next_timestamp())
        logger.info(f"Raft snapshot exported ({blob.size / 1024 / 1024:.2f} MB)")
        return blob
