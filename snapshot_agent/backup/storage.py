"""
Snapshot writers.

Supports:
- LocalDirectoryWriter: Store snapshots in a local directory
- ObjectStoreWriter: Upload snapshots to S3 or an S3-compatible object store

Each writer persists one snapshot per call and then trims older snapshots at
its destination according to the retention count. Storage failures are
returned in the WriteResult instead of being raised, so one destination can
never stop another.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError

from ..config import Configuration
from ..vault import SnapshotBlob
from .retention import RetentionCandidate, select_for_deletion, snapshot_filename, is_snapshot_name


logger = logging.getLogger(__name__)

# Snapshots above this size are uploaded in parts
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024

# Error codes returned by endpoints that do not support (or allow) listing
_LISTING_UNSUPPORTED = {'NotImplemented', 'AccessDenied', 'MethodNotAllowed'}


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


@dataclass
class WriteResult:
    """Outcome of writing one snapshot to one destination."""

    destination: str
    path: str
    success: bool
    error: Optional[str] = None
    deleted: List[str] = field(default_factory=list)


def _s3_error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class LocalDirectoryWriter:
    """
    Writes snapshots into a local directory.

    Files are named ``raft_snapshot-<unix ns>.snap`` directly under ``path``.
    """

    def __init__(self, path: str, retain: int = 0):
        """
        Initialize local directory writer.

        Args:
            path: Directory holding the snapshots
            retain: Number of snapshots to keep (<= 0 keeps all)
        """
        self.path = Path(path)
        self.retain = retain

    @property
    def name(self) -> str:
        return 'local'

    def write_snapshot(self, blob: SnapshotBlob) -> WriteResult:
        dest_path = self.path / snapshot_filename(blob.timestamp)

        try:
            self._store(blob.data, dest_path)
        except StorageError as e:
            return WriteResult(self.name, str(dest_path), False, error=str(e))

        deleted = self._apply_retention()
        return WriteResult(self.name, str(dest_path), True, deleted=deleted)

    def _store(self, data: bytes, dest_path: Path):
        """
        Write snapshot bytes atomically.

        The data goes to a temporary file that does not match the snapshot
        naming convention and is renamed into place once it is on disk.

        Raises:
            StorageError: If the file cannot be written
        """
        tmp_path = dest_path.with_name(dest_path.name + '.tmp')

        try:
            self.path.mkdir(parents=True, exist_ok=True)

            with open(tmp_path, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, dest_path)

        except PermissionError as e:
            self._discard(tmp_path)
            raise StorageError(f"Permission denied writing to {dest_path}: {e}") from e
        except OSError as e:
            self._discard(tmp_path)
            raise StorageError(f"Failed to write snapshot to {dest_path}: {e}") from e

    def _discard(self, tmp_path: Path):
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {tmp_path}: {e}")

    def list_snapshots(self) -> List[RetentionCandidate]:
        """
        List snapshot files in the directory.

        Returns:
            RetentionCandidate per matching regular file

        Raises:
            StorageError: If the directory cannot be read
        """
        try:
            candidates = []

            for entry in os.scandir(self.path):
                if entry.is_file() and is_snapshot_name(entry.name):
                    candidates.append(RetentionCandidate(
                        name=entry.name,
                        modified_at=entry.stat().st_mtime_ns
                    ))

            return candidates

        except OSError as e:
            raise StorageError(f"Failed to list local snapshots in {self.path}: {e}") from e

    def delete(self, name: str):
        """
        Delete a snapshot file.

        Raises:
            StorageError: If deletion fails
        """
        full_path = self.path / name

        try:
            full_path.unlink()
        except FileNotFoundError:
            pass
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to delete local file {full_path}: {e}") from e

    def _apply_retention(self) -> List[str]:
        if self.retain <= 0:
            return []

        try:
            candidates = self.list_snapshots()
        except StorageError as e:
            logger.error(f"Unable to read directory to delete old snapshots: {e}")
            return []

        deleted = []
        for candidate in select_for_deletion(candidates, self.retain):
            try:
                self.delete(candidate.name)
                deleted.append(candidate.name)
                logger.info(f"Deleted old local snapshot: {candidate.name}")
            except StorageError as e:
                logger.error(f"Failed to delete old local snapshot {candidate.name}: {e}")

        return deleted


class ObjectStoreWriter:
    """
    Uploads snapshots to S3 or an S3-compatible object store.

    Objects are stored at ``{key_prefix}raft_snapshot-<unix ns>.snap``, or at
    ``{key_prefix}{static_snapshot_name}`` when a static name is configured.
    In the latter case every upload overwrites the same object and no
    retention pass runs.
    """

    def __init__(self, bucket_name: str, key_prefix: str = '', region: str = '',
                 endpoint: str = '', access_key: str = '', secret_key: str = '',
                 server_side_encryption: bool = False, static_snapshot_name: str = '',
                 force_path_style: bool = False, retain: int = 0, timeout: float = 60,
                 s3_client=None):
        """
        Initialize object store writer.

        Args:
            bucket_name: Target bucket
            key_prefix: Prefix prepended to every object key
            region: AWS region (default chain when empty)
            endpoint: Custom endpoint URL for S3-compatible stores
            access_key: AWS access key ID (default credential chain when empty)
            secret_key: AWS secret access key
            server_side_encryption: Request SSE (AES256) on upload
            static_snapshot_name: Always write to this object name
            force_path_style: Use path-style addressing
            retain: Number of snapshots to keep (<= 0 keeps all)
            timeout: Connect/read timeout in seconds
            s3_client: Pre-built boto3 S3 client
        """
        self.bucket_name = bucket_name
        self.key_prefix = key_prefix
        self.server_side_encryption = server_side_encryption
        self.static_snapshot_name = static_snapshot_name
        self.retain = retain

        if s3_client is not None:
            self.s3_client = s3_client
            return

        client_kwargs = {
            'config': BotoConfig(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={'max_attempts': 3},
                s3={'addressing_style': 'path'} if force_path_style else None,
            )
        }
        if region:
            client_kwargs['region_name'] = region
        if endpoint:
            client_kwargs['endpoint_url'] = endpoint
        if access_key and secret_key:
            client_kwargs['aws_access_key_id'] = access_key
            client_kwargs['aws_secret_access_key'] = secret_key

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}") from e

    @property
    def name(self) -> str:
        return 'aws'

    def object_key(self, timestamp: int) -> str:
        filename = self.static_snapshot_name or snapshot_filename(timestamp)
        return f"{self.key_prefix}{filename}"

    def write_snapshot(self, blob: SnapshotBlob) -> WriteResult:
        s3_key = self.object_key(blob.timestamp)
        location = f"s3://{self.bucket_name}/{s3_key}"

        try:
            self.upload(blob.data, s3_key)
        except StorageError as e:
            return WriteResult(self.name, location, False, error=str(e))

        if self.static_snapshot_name:
            return WriteResult(self.name, location, True)

        deleted = self._apply_retention()
        return WriteResult(self.name, location, True, deleted=deleted)

    def _sse_args(self) -> dict:
        return {'ServerSideEncryption': 'AES256'} if self.server_side_encryption else {}

    def upload(self, data: bytes, s3_key: str):
        """
        Upload snapshot bytes.

        Raises:
            StorageError: If upload fails
        """
        try:
            if len(data) > MULTIPART_THRESHOLD:
                self._multipart_upload(data, s3_key)
            else:
                self._simple_upload(data, s3_key)

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_s3_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}") from e

    def _simple_upload(self, data: bytes, s3_key: str):
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=s3_key,
            Body=data,
            **self._sse_args()
        )

    def _multipart_upload(self, data: bytes, s3_key: str):
        """
        Upload a large snapshot in parts, aborting the upload on any error.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key,
            **self._sse_args()
        )
        upload_id = response['UploadId']

        parts = []

        try:
            for part_number, offset in enumerate(range(0, len(data), MULTIPART_CHUNK_SIZE), start=1):
                response = self.s3_client.upload_part(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=data[offset:offset + MULTIPART_CHUNK_SIZE]
                )

                parts.append({
                    'PartNumber': part_number,
                    'ETag': response['ETag']
                })

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def delete(self, s3_key: str):
        """
        Delete an object from S3.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_s3_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}") from e

    def list_snapshots(self) -> Optional[List[RetentionCandidate]]:
        """
        List snapshot objects directly under the key prefix.

        Returns:
            RetentionCandidate per matching object (name relative to the
            prefix), or None when the endpoint does not support listing

        Raises:
            StorageError: If listing fails
        """
        try:
            candidates = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.key_prefix):
                for obj in page.get('Contents', []):
                    name = obj['Key'][len(self.key_prefix):]
                    if is_snapshot_name(name):
                        modified = obj['LastModified']
                        candidates.append(RetentionCandidate(
                            name=name,
                            modified_at=int(modified.timestamp()) * 10**9 + modified.microsecond * 1000
                        ))

            return candidates

        except ClientError as e:
            error_code = _s3_error_code(e)
            if error_code in _LISTING_UNSUPPORTED:
                logger.warning(f"Object listing not available for bucket {self.bucket_name} ({error_code})")
                return None
            raise StorageError(f"S3 list failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}") from e

    def _apply_retention(self) -> List[str]:
        if self.retain <= 0:
            return []

        try:
            candidates = self.list_snapshots()
        except StorageError as e:
            logger.error(f"Unable to list bucket to delete old snapshots: {e}")
            return []

        if candidates is None:
            logger.warning("Retention skipped for S3 destination: listing is not supported")
            return []

        deleted = []
        for candidate in select_for_deletion(candidates, self.retain):
            s3_key = f"{self.key_prefix}{candidate.name}"
            try:
                self.delete(s3_key)
                deleted.append(s3_key)
                logger.info(f"Deleted old S3 snapshot: {s3_key}")
            except StorageError as e:
                logger.error(f"Failed to delete old S3 snapshot {s3_key}: {e}")

        return deleted


def create_writers(config: Configuration) -> list:
    """
    Build the writers for every configured destination.

    Args:
        config: Agent configuration

    Returns:
        List of LocalDirectoryWriter / ObjectStoreWriter instances

    Raises:
        StorageError: If a writer cannot be initialized
    """
    writers = []

    if config.local.enabled:
        writers.append(LocalDirectoryWriter(config.local.path, retain=config.retain))

    if config.aws.enabled:
        writers.append(ObjectStoreWriter(
            bucket_name=config.aws.bucket,
            key_prefix=config.aws.key_prefix,
            region=config.aws.region,
            endpoint=config.aws.endpoint,
            access_key=config.aws.access_key_id,
            secret_key=config.aws.secret_access_key,
            server_side_encryption=config.aws.server_side_encryption,
            static_snapshot_name=config.aws.static_snapshot_name,
            force_path_style=config.aws.force_path_style,
            retain=config.retain,
            timeout=config.timeout,
        ))

    return writers
