"""
Agent configuration.

The configuration is a JSON document read once at startup. It is parsed into
frozen dataclasses so that nothing downstream can change it while the agent
is running.
"""

import os
import re
import json
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional


DEFAULT_VAULT_ADDRESS = 'https://127.0.0.1:8200'
DEFAULT_FREQUENCY = '1h'
DEFAULT_TIMEOUT = 60

_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1,
    'm': 60,
    'h': 3600,
}
_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)')


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""
    pass


class VaultAuthMethod(str, Enum):
    """Supported Vault authentication methods."""

    TOKEN = 'token'
    KUBERNETES = 'k8s'
    APPROLE = 'AppRole'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'VaultAuthMethod':
        if not value:
            raise ConfigError(
                "vault_auth_method is required (one of: token, k8s, AppRole)"
            )

        aliases = {
            'token': cls.TOKEN,
            'k8s': cls.KUBERNETES,
            'kubernetes': cls.KUBERNETES,
            'approle': cls.APPROLE,
        }
        method = aliases.get(str(value).strip().lower())
        if method is None:
            raise ConfigError(f"Unknown vault auth method '{value}'")
        return method


@dataclass(frozen=True)
class S3Config:
    """Configuration for the S3 (or S3-compatible) destination."""

    access_key_id: str = ''
    secret_access_key: str = ''
    endpoint: str = ''
    region: str = ''
    bucket: str = ''
    key_prefix: str = ''
    server_side_encryption: bool = False
    static_snapshot_name: str = ''
    force_path_style: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.bucket)


@dataclass(frozen=True)
class LocalConfig:
    """Configuration for the local directory destination."""

    path: str = ''

    @property
    def enabled(self) -> bool:
        return bool(self.path)


@dataclass(frozen=True)
class Configuration:
    """Top level agent configuration."""

    vault_auth_method: VaultAuthMethod
    address: str = DEFAULT_VAULT_ADDRESS
    retain: int = 0
    frequency: timedelta = field(default_factory=lambda: parse_duration(DEFAULT_FREQUENCY))
    timeout: float = DEFAULT_TIMEOUT
    tls_skip_verify: bool = False
    ca_cert: str = ''
    aws: S3Config = field(default_factory=S3Config)
    local: LocalConfig = field(default_factory=LocalConfig)
    role_id: str = ''
    secret_id: str = ''
    approle: str = ''
    token: str = ''
    k8s_auth_role: str = ''
    k8s_auth_path: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Configuration':
        """
        Build a configuration from the decoded JSON document.

        Args:
            data: Decoded JSON object

        Returns:
            Validated Configuration

        Raises:
            ConfigError: If a field is missing or invalid
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a JSON object")

        aws_data = _section(data, 'aws_storage')
        local_data = _section(data, 'local_storage')

        address = (
            data.get('address')
            or data.get('addr')
            or os.environ.get('VAULT_ADDR')
            or DEFAULT_VAULT_ADDRESS
        )

        config = cls(
            vault_auth_method=VaultAuthMethod.parse(data.get('vault_auth_method')),
            address=address,
            retain=_int_field(data, 'retain', 0),
            frequency=parse_duration(data.get('frequency') if data.get('frequency') not in (None, '') else DEFAULT_FREQUENCY),
            timeout=_timeout_field(data),
            tls_skip_verify=_bool_field(data, 'tls_skip_verify', False),
            ca_cert=data.get('ca_cert') or '',
            aws=S3Config(
                access_key_id=aws_data.get('access_key_id') or '',
                secret_access_key=aws_data.get('secret_access_key') or '',
                endpoint=aws_data.get('s3_endpoint') or '',
                region=aws_data.get('s3_region') or '',
                bucket=aws_data.get('s3_bucket') or '',
                key_prefix=aws_data.get('s3_key_prefix') or '',
                server_side_encryption=_bool_field(aws_data, 's3_server_side_encryption', False),
                static_snapshot_name=aws_data.get('s3_static_snapshot_name') or '',
                force_path_style=_bool_field(aws_data, 's3_force_path_style', False),
            ),
            local=LocalConfig(path=local_data.get('path') or ''),
            role_id=data.get('role_id') or '',
            secret_id=data.get('secret_id') or '',
            approle=data.get('approle') or '',
            token=data.get('token') or '',
            k8s_auth_role=data.get('k8s_auth_role') or '',
            k8s_auth_path=data.get('k8s_auth_path') or '',
        )

        if not config.aws.enabled and not config.local.enabled:
            raise ConfigError(
                "No snapshot destination configured "
                "(set local_storage.path and/or aws_storage.s3_bucket)"
            )

        return config


def parse_duration(value: Any) -> timedelta:
    """
    Parse a poll interval.

    Accepts integer seconds or Go-style duration strings such as
    ``30s``, ``15m``, ``1h30m`` or ``500ms``.

    Raises:
        ConfigError: If the value cannot be parsed or is not positive
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid frequency: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        if text.isdigit():
            seconds = float(text)
        else:
            parts = _DURATION_PART.findall(text)
            if not parts or ''.join(n + u for n, u in parts) != text:
                raise ConfigError(f"Invalid frequency: {value!r}")
            seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)

    if seconds <= 0:
        raise ConfigError(f"Frequency must be positive: {value!r}")

    return timedelta(seconds=seconds)


def load_config(config_path: str) -> Configuration:
    """
    Read and validate the configuration file.

    Args:
        config_path: Path to the JSON configuration file

    Returns:
        Configuration instance

    Raises:
        ConfigError: If the file cannot be read, parsed or validated
    """
    if not config_path:
        raise ConfigError("Please provide a config path (--config /path/to/config.json)")

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Cannot parse configuration file: {e}") from e

    return Configuration.from_dict(data)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a JSON object")
    return section


def _int_field(data: Dict[str, Any], name: str, default: int) -> int:
    value = data.get(name, default)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"'{name}' must be a whole number, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be an integer, got {value!r}")


def _bool_field(data: Dict[str, Any], name: str, default: bool) -> bool:
    value = data.get(name)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"'{name}' must be true or false, got {value!r}")
    return value


def _timeout_field(data: Dict[str, Any]) -> float:
    value = data.get('timeout', DEFAULT_TIMEOUT)
    if value is None:
        return DEFAULT_TIMEOUT
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'timeout' must be a number of seconds, got {value!r}")
    if timeout <= 0:
        raise ConfigError("'timeout' must be positive")
    return timeout
