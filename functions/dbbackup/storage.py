"""
Storage abstraction for S3-compatible object storage and in-memory testing.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from dbbackup.config import ConfigurationError, STORAGE_CONNECTION_ENV

SQL_CONTENT_TYPE = "application/sql"

_CONNECTION_KEYS = {
    "endpoint": "endpoint",
    "endpointurl": "endpoint",
    "region": "region",
    "accesskeyid": "access_key_id",
    "accountname": "access_key_id",
    "secretaccesskey": "secret_access_key",
    "accountkey": "secret_access_key",
    "addressingstyle": "addressing_style",
}

# A concurrent conditional write to the same key can also surface as a 409.
_EXISTS_CODES = ("PreconditionFailed", "412", "ConditionalRequestConflict")


class BlobExistsError(Exception):
    """Raised when an upload would overwrite an existing object."""

    def __init__(self, container: str, name: str):
        super().__init__(f"Blob {name} already exists in container {container}")
        self.container = container
        self.name = name


class StorageClient(Protocol):
    """Defines the operations a backup run needs from object storage."""

    def upload_stream(self, name: str, stream: BinaryIO) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    container: str = "databasebackups"
    stored_objects: dict = field(default_factory=dict)
    opened: int = 0
    closed: bool = False

    def exists(self, name: str) -> bool:
        return name in self.stored_objects

    def upload_stream(self, name: str, stream: BinaryIO) -> None:
        if self.exists(name):
            raise BlobExistsError(self.container, name)
        self.stored_objects[name] = stream.read()

    def close(self) -> None:
        self.closed = True

    @contextmanager
    def connect(self, connection_string: str, container: str) -> Iterator[StorageClient]:
        """Stand-in for ``open_storage_client``."""
        self.opened += 1
        self.container = container
        try:
            yield self
        finally:
            self.close()


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client. The container maps onto a bucket.
    """

    container: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    region: str = ""
    addressing_style: str = "virtual"

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": self.addressing_style},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_stream(self, name: str, stream: BinaryIO) -> None:
        # The write itself is conditional, so no read permission is needed.
        try:
            self._client.put_object(
                Bucket=self.container,
                Key=name,
                Body=stream,
                ContentType=SQL_CONTENT_TYPE,
                IfNoneMatch="*",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _EXISTS_CODES:
                raise BlobExistsError(self.container, name) from exc
            raise

    def close(self) -> None:
        self._client.close()


def parse_storage_connection_string(connection_string: str) -> dict:
    """
    Parse ``Key=Value;`` pairs into keyword arguments for S3StorageClient.

    Keys are case-insensitive. ``AccountName``/``AccountKey`` are accepted as
    aliases for the access key pair.
    """
    params: dict = {}
    for part in connection_string.split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ConfigurationError(
                f"Malformed storage connection string segment: {key!r}",
                variable=STORAGE_CONNECTION_ENV,
            )
        target = _CONNECTION_KEYS.get(key.strip().replace("_", "").lower())
        if target:
            params[target] = value.strip()

    missing = [k for k in ("access_key_id", "secret_access_key") if not params.get(k)]
    if missing:
        raise ConfigurationError(
            f"Storage connection string is missing: {', '.join(missing)}",
            variable=STORAGE_CONNECTION_ENV,
        )
    return params


@contextmanager
def open_storage_client(connection_string: str, container: str) -> Iterator[StorageClient]:
    """Yield a storage client for the container and close it on exit."""
    params = parse_storage_connection_string(connection_string)
    client = S3StorageClient(
        container=container,
        endpoint=params.pop("endpoint", ""),
        **params,
    )
    try:
        yield client
    finally:
        client.close()
