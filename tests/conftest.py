"""
Shared pytest fixtures for snapshot agent tests.

This module provides fixtures for:
- Configuration documents and files
- A mocked hvac client
- Credential store and snapshot blobs
- Mock S3 service (moto)
- Pre-populated snapshot directories
"""

import os
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from snapshot_agent.auth import CredentialStore, StaticTokenAuth
from snapshot_agent.config import Configuration
from snapshot_agent.vault import SnapshotBlob


@pytest.fixture
def config_data(tmp_path):
    """
    Configuration document using AppRole auth and both destinations.
    """
    return {
        'address': 'https://vault.example.com:8200',
        'retain': 3,
        'frequency': '1h',
        'aws_storage': {
            'access_key_id': 'test_access_key',
            'secret_access_key': 'test_secret_key',
            's3_region': 'us-east-1',
            's3_bucket': 'test-bucket',
            's3_key_prefix': 'vault/',
            's3_server_side_encryption': True,
        },
        'local_storage': {
            'path': str(tmp_path / 'snapshots'),
        },
        'role_id': 'test-role-id',
        'secret_id': 'test-secret-id',
        'vault_auth_method': 'AppRole',
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    """Write the configuration document to disk and return its path."""
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(config_data))
    return str(path)


@pytest.fixture
def config(config_data):
    return Configuration.from_dict(config_data)


@pytest.fixture
def mock_vault_client():
    """
    MagicMock standing in for hvac.Client.

    Leader status defaults to "this node is the leader" and the snapshot
    export returns a small binary payload.
    """
    client = MagicMock()
    client.token = None
    client.sys.read_leader_status.return_value = {
        'ha_enabled': True,
        'is_self': True,
        'leader_address': 'https://vault.example.com:8200',
    }

    snapshot_response = MagicMock()
    snapshot_response.status_code = 200
    snapshot_response.content = b'\x1f\x8b raft snapshot payload'
    client.sys.take_raft_snapshot.return_value = snapshot_response

    client.auth.approle.login.return_value = {
        'auth': {'client_token': 'approle-token', 'lease_duration': 3600}
    }
    client.auth.kubernetes.login.return_value = {
        'auth': {'client_token': 'k8s-token', 'lease_duration': 600}
    }
    return client


@pytest.fixture
def credential_store(mock_vault_client):
    """Credential store already holding a static token."""
    store = CredentialStore(StaticTokenAuth('static-token'), mock_vault_client)
    store.renew(datetime(2024, 1, 1, tzinfo=timezone.utc))
    return store


@pytest.fixture
def snapshot_blob():
    return SnapshotBlob(data=b'raft snapshot bytes' * 64, timestamp=1700000000000000400)


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def make_snapshots():
    """
    Create snapshot files with given modification times (Unix ns).

    Usage: make_snapshots(directory, [100, 200, 300])
    """
    def _make(directory, mtimes, content=b'old snapshot'):
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for mtime in mtimes:
            path = directory / f'raft_snapshot-{mtime}.snap'
            path.write_bytes(content)
            os.utime(path, ns=(mtime, mtime))
            paths.append(path)
        return paths

    return _make
