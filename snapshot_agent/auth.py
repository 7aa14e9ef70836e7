"""
Vault credential lifecycle.

An authentication strategy performs one login flow and returns a Credential.
The CredentialStore keeps the current credential and decides when it has to
be renewed. Renewal is driven by the agent at the start of every cycle; there
is no background renewal.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import hvac
from hvac.exceptions import VaultError
from requests.exceptions import RequestException

from .config import Configuration, VaultAuthMethod


logger = logging.getLogger(__name__)

# Static tokens are managed outside the agent and never renewed by it
STATIC_TOKEN_TTL = timedelta(days=365)

DEFAULT_APPROLE_MOUNT = 'approle'
SERVICE_ACCOUNT_TOKEN_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/token'


class AuthError(Exception):
    """Raised when Vault authentication fails."""
    pass


@dataclass(frozen=True)
class Credential:
    """A Vault token and the instant it must be renewed by."""

    token: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _credential_from_login(response: Optional[Dict[str, Any]], now: datetime) -> Credential:
    """
    Build a credential from a Vault login response.

    The credential is renewed at half of the lease so that clock skew and
    cycle duration never let it run out.
    """
    auth = (response or {}).get('auth') or {}
    token = auth.get('client_token')
    if not token:
        raise AuthError("Vault login response did not contain a client token")

    try:
        lease_duration = int(auth.get('lease_duration') or 0)
    except (TypeError, ValueError):
        raise AuthError(f"Invalid lease duration in login response: {auth.get('lease_duration')!r}")

    if lease_duration <= 0:
        # Non-expiring token
        return Credential(token=token, expires_at=now + STATIC_TOKEN_TTL)

    return Credential(token=token, expires_at=now + timedelta(seconds=lease_duration) / 2)


class StaticTokenAuth:
    """Uses a token from the configuration as-is."""

    name = 'token'

    def __init__(self, token: str):
        self.token = token

    def login(self, client: hvac.Client, now: datetime) -> Credential:
        if not self.token:
            raise AuthError("Token authentication selected but no token configured")
        return Credential(token=self.token, expires_at=now + STATIC_TOKEN_TTL)


class AppRoleAuth:
    """
    Logs in with an AppRole role ID and secret ID.

    Posts ``{role_id, secret_id}`` to ``auth/<mount>/login``.
    """

    name = 'AppRole'

    def __init__(self, role_id: str, secret_id: str, mount_path: str = DEFAULT_APPROLE_MOUNT):
        self.role_id = role_id
        self.secret_id = secret_id
        self.mount_path = mount_path or DEFAULT_APPROLE_MOUNT

    def login(self, client: hvac.Client, now: datetime) -> Credential:
        if not self.role_id:
            raise AuthError("AppRole authentication selected but no role_id configured")

        try:
            response = client.auth.approle.login(
                role_id=self.role_id,
                secret_id=self.secret_id or None,
                use_token=False,
                mount_point=self.mount_path,
            )
        except (VaultError, RequestException) as e:
            raise AuthError(f"Error logging into AppRole auth backend '{self.mount_path}': {e}") from e

        return _credential_from_login(response, now)


class KubernetesAuth:
    """
    Logs in with the pod's service account token.

    Posts ``{role, jwt}`` to ``auth/<mount>/login``.
    """

    name = 'k8s'

    def __init__(self, role: str, mount_path: str, token_path: str = SERVICE_ACCOUNT_TOKEN_PATH):
        self.role = role
        self.mount_path = mount_path
        self.token_path = token_path

    def _read_jwt(self) -> str:
        try:
            with open(self.token_path, 'r') as f:
                return f.read().strip()
        except OSError as e:
            raise AuthError(f"Cannot read service account token {self.token_path}: {e}") from e

    def login(self, client: hvac.Client, now: datetime) -> Credential:
        if not self.role or not self.mount_path:
            raise AuthError("Missing k8s auth definitions (k8s_auth_role and k8s_auth_path)")

        jwt = self._read_jwt()

        try:
            response = client.auth.kubernetes.login(
                role=self.role,
                jwt=jwt,
                use_token=False,
                mount_point=self.mount_path.strip('/'),
            )
        except (VaultError, RequestException) as e:
            raise AuthError(f"Error logging into Kubernetes auth backend '{self.mount_path}': {e}") from e

        return _credential_from_login(response, now)


def create_auth_strategy(config: Configuration):
    """
    Factory function to create the configured authentication strategy.

    Args:
        config: Agent configuration

    Returns:
        StaticTokenAuth, AppRoleAuth or KubernetesAuth instance

    Raises:
        AuthError: If the auth method is not supported
    """
    method = config.vault_auth_method

    if method == VaultAuthMethod.TOKEN:
        return StaticTokenAuth(config.token)
    elif method == VaultAuthMethod.APPROLE:
        return AppRoleAuth(config.role_id, config.secret_id, config.approle)
    elif method == VaultAuthMethod.KUBERNETES:
        return KubernetesAuth(config.k8s_auth_role, config.k8s_auth_path)
    else:
        raise AuthError(f"Unknown vault auth method '{method}'")


class CredentialStore:
    """
    Holds the current Vault credential.

    There is no stored "expired" state: whether the credential must be
    renewed is derived from the clock on every call to needs_renewal().
    """

    def __init__(self, strategy, client: hvac.Client):
        """
        Args:
            strategy: Authentication strategy used for every renewal
            client: hvac client used for login requests
        """
        self.strategy = strategy
        self.client = client
        self.credential: Optional[Credential] = None

    def needs_renewal(self, now: Optional[datetime] = None) -> bool:
        if self.credential is None:
            return True
        return not self.credential.is_valid(now or _utcnow())

    def renew(self, now: Optional[datetime] = None) -> Credential:
        """
        Log in again and replace the current credential.

        Raises:
            AuthError: If the login fails
        """
        now = now or _utcnow()
        logger.info(f"Authenticating to Vault using {self.strategy.name} authentication")

        credential = self.strategy.login(self.client, now)
        self.credential = credential

        logger.info(f"Vault token acquired, renewal due at {credential.expires_at.isoformat()}")
        return credential

    @property
    def token(self) -> str:
        if self.credential is None:
            raise AuthError("Not authenticated to Vault")
        return self.credential.token
