"""
Cloud storage handlers for backup artifacts.

Supports:
- S3Storage: AWS S3 and S3-compatible endpoints
- GCSStorage: Google Cloud Storage
- AzureBlobStorage: Azure Blob Storage

Every handler exposes upload/download/list_objects. Object keys mirror the
local file name. Provider errors are mapped onto AuthenticationError,
NotFoundError and TransientNetworkError; transient failures get one retry.
"""

import os
import time
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    PartialCredentialsError,
)
from google.api_core import exceptions as gcs_exceptions
from google.auth.exceptions import DefaultCredentialsError
from google.cloud.storage import Client as GCSClient
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobServiceClient

from dbbackup.config import CloudConfig, ConfigurationError
from dbbackup.models import CloudProvider, CloudTarget


logger = logging.getLogger(__name__)

RETRY_ATTEMPTS = 2
RETRY_BACKOFF_SECONDS = 2.0
MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class AuthenticationError(StorageError):
    """Credentials are missing, invalid, or lack access."""
    pass


class NotFoundError(StorageError):
    """Bucket/container or object does not exist."""
    pass


class TransientNetworkError(StorageError):
    """Network-class failure that may succeed on retry."""
    pass


def with_retry(operation: Callable, *args, attempts: int = RETRY_ATTEMPTS,
               backoff: float = RETRY_BACKOFF_SECONDS, **kwargs):
    """
    Call a storage operation, retrying only on TransientNetworkError.

    Args:
        operation: Callable to invoke
        attempts: Total attempts (first try included)
        backoff: Base delay in seconds, doubled after each failure

    Returns:
        Whatever the operation returns
    """
    delay = backoff
    for attempt in range(1, attempts + 1):
        try:
            return operation(*args, **kwargs)
        except TransientNetworkError as e:
            if attempt >= attempts:
                raise
            logger.warning(f"Transient storage error (attempt {attempt}/{attempts}), retrying in {delay:.1f}s: {e}")
            time.sleep(delay)
            delay *= 2


def _remove_partial(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            pass


def _default_download_path(remote_key: str) -> str:
    return os.path.basename(remote_key) or remote_key


class S3Storage:
    """
    Handler for AWS S3 and S3-compatible object stores.

    Credentials come from the standard boto3 chain (environment, shared
    config, instance role).
    """

    AUTH_CODES = {'403', 'AccessDenied', 'InvalidAccessKeyId', 'SignatureDoesNotMatch',
                  'ExpiredToken', 'InvalidToken', 'AllAccessDisabled'}
    NOT_FOUND_CODES = {'404', 'NoSuchKey', 'NoSuchBucket', 'NotFound'}
    TRANSIENT_CODES = {'500', '502', '503', '504', 'InternalError', 'ServiceUnavailable',
                       'SlowDown', 'RequestTimeout', 'Throttling'}

    def __init__(self, region: str = 'us-east-1', endpoint_url: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            region: AWS region (default: us-east-1)
            endpoint_url: Optional endpoint for S3-compatible storage
        """
        self.region = region

        client_kwargs: Dict[str, Any] = {
            'region_name': region,
            # One HTTP attempt per call, with_retry owns retries
            'config': BotoConfig(signature_version='s3v4', retries={'total_max_attempts': 1}),
        }
        if endpoint_url:
            client_kwargs['endpoint_url'] = endpoint_url

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def upload(self, local_path: str, bucket_name: str) -> str:
        """
        Upload an artifact to S3.

        Args:
            local_path: Path to local artifact
            bucket_name: Target bucket

        Returns:
            S3 key of uploaded file (the local file name)

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = os.path.basename(local_path)
        file_size = os.path.getsize(local_path)

        def _upload():
            try:
                if file_size > MULTIPART_THRESHOLD:
                    self._multipart_upload(local_path, bucket_name, key)
                else:
                    self._simple_upload(local_path, bucket_name, key)
            except Exception as e:
                raise self._translate(e, 'upload', bucket_name, key)

        with_retry(_upload)
        logger.info(f"Uploaded {local_path} to s3://{bucket_name}/{key}")
        return key

    def _simple_upload(self, local_path: str, bucket_name: str, key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(Bucket=bucket_name, Key=key, Body=f)

    def _multipart_upload(self, local_path: str, bucket_name: str, key: str):
        response = self.s3_client.create_multipart_upload(Bucket=bucket_name, Key=key)
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except Exception as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def download(self, remote_key: str, bucket_name: str, local_path: Optional[str] = None) -> str:
        """
        Download an object from S3.

        Args:
            remote_key: S3 object key
            bucket_name: Source bucket
            local_path: Destination path (defaults to the key's file name)

        Returns:
            Local path of the downloaded file

        Raises:
            NotFoundError: If bucket or key does not exist
            StorageError: If download fails
        """
        local_path = local_path or _default_download_path(remote_key)

        def _download():
            try:
                self.s3_client.download_file(bucket_name, remote_key, local_path)
            except Exception as e:
                _remove_partial(local_path)
                raise self._translate(e, 'download', bucket_name, remote_key)

        with_retry(_download)
        logger.info(f"Downloaded s3://{bucket_name}/{remote_key} to {local_path}")
        return local_path

    def list_objects(self, bucket_name: str, prefix: str = '') -> List[Dict[str, Any]]:
        """
        List objects in a bucket.

        Returns:
            List of dicts with 'key', 'last_modified', and 'size' keys
        """
        def _list():
            try:
                objects = []
                paginator = self.s3_client.get_paginator('list_objects_v2')

                for page in paginator.paginate(Bucket=bucket_name, Prefix=prefix):
                    for obj in page.get('Contents', []):
                        objects.append({
                            'key': obj['Key'],
                            'last_modified': obj['LastModified'],
                            'size': obj['Size']
                        })

                return objects
            except Exception as e:
                raise self._translate(e, 'list', bucket_name, prefix)

        return with_retry(_list)

    def _translate(self, error: Exception, action: str, bucket_name: str, key: str) -> StorageError:
        """Map a boto3/botocore exception onto the storage error taxonomy."""
        if isinstance(error, StorageError):
            return error

        location = f"s3://{bucket_name}/{key}"

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return AuthenticationError(f"S3 {action} failed, credentials not found: {error}")

        if isinstance(error, ClientError):
            error_code = str(error.response.get('Error', {}).get('Code', 'Unknown'))
            if error_code in self.AUTH_CODES:
                return AuthenticationError(f"S3 {action} denied for {location} ({error_code})")
            if error_code in self.NOT_FOUND_CODES:
                return NotFoundError(f"S3 object or bucket not found: {location} ({error_code})")
            if error_code in self.TRANSIENT_CODES:
                return TransientNetworkError(f"S3 {action} failed ({error_code}): {error}")
            return StorageError(f"S3 {action} failed ({error_code}): {error}")

        if isinstance(error, (BotoConnectionError, HTTPClientError)):
            return TransientNetworkError(f"S3 {action} failed, network error: {error}")

        if isinstance(error, BotoCoreError):
            return StorageError(f"S3 {action} failed: {error}")

        return StorageError(f"Failed to {action} {location}: {error}")


class GCSStorage:
    """Handler for Google Cloud Storage buckets."""

    TRANSIENT = (
        gcs_exceptions.ServiceUnavailable,
        gcs_exceptions.InternalServerError,
        gcs_exceptions.TooManyRequests,
        gcs_exceptions.GatewayTimeout,
        gcs_exceptions.BadGateway,
    )

    def __init__(self, project_id: Optional[str] = None):
        """
        Initialize GCS storage handler.

        Args:
            project_id: GCP project ID (optional; defaults to the ambient project)
        """
        self.project_id = project_id

        client_kwargs: Dict[str, Any] = {}
        if project_id:
            client_kwargs['project'] = project_id

        try:
            self.client = GCSClient(**client_kwargs)
        except DefaultCredentialsError as e:
            raise AuthenticationError(f"GCS credentials not found: {e}")
        except Exception as e:
            raise StorageError(f"Failed to initialize GCS client: {e}")

    def upload(self, local_path: str, bucket_name: str) -> str:
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = os.path.basename(local_path)

        def _upload():
            try:
                blob = self.client.bucket(bucket_name).blob(key)
                blob.upload_from_filename(local_path)
            except Exception as e:
                raise self._translate(e, 'upload', bucket_name, key)

        with_retry(_upload)
        logger.info(f"Uploaded {local_path} to gs://{bucket_name}/{key}")
        return key

    def download(self, remote_key: str, bucket_name: str, local_path: Optional[str] = None) -> str:
        local_path = local_path or _default_download_path(remote_key)

        def _download():
            try:
                blob = self.client.bucket(bucket_name).blob(remote_key)
                blob.download_to_filename(local_path)
            except Exception as e:
                _remove_partial(local_path)
                raise self._translate(e, 'download', bucket_name, remote_key)

        with_retry(_download)
        logger.info(f"Downloaded gs://{bucket_name}/{remote_key} to {local_path}")
        return local_path

    def list_objects(self, bucket_name: str, prefix: str = '') -> List[Dict[str, Any]]:
        def _list():
            try:
                return [
                    {'key': blob.name, 'last_modified': blob.updated, 'size': blob.size}
                    for blob in self.client.list_blobs(bucket_name, prefix=prefix or None)
                ]
            except Exception as e:
                raise self._translate(e, 'list', bucket_name, prefix)

        return with_retry(_list)

    def _translate(self, error: Exception, action: str, bucket_name: str, key: str) -> StorageError:
        if isinstance(error, StorageError):
            return error

        location = f"gs://{bucket_name}/{key}"

        if isinstance(error, gcs_exceptions.NotFound):
            return NotFoundError(f"GCS object or bucket not found: {location}")
        if isinstance(error, (gcs_exceptions.Unauthorized, gcs_exceptions.Forbidden, DefaultCredentialsError)):
            return AuthenticationError(f"GCS {action} denied for {location}: {error}")
        if isinstance(error, self.TRANSIENT):
            return TransientNetworkError(f"GCS {action} failed: {error}")
        if isinstance(error, (ConnectionError, TimeoutError)):
            return TransientNetworkError(f"GCS {action} failed, network error: {error}")
        return StorageError(f"GCS {action} failed for {location}: {error}")


class AzureBlobStorage:
    """Handler for Azure Blob Storage containers."""

    def __init__(self, connection_string: str):
        """
        Initialize Azure storage handler.

        Args:
            connection_string: Storage account connection string

        Raises:
            ConfigurationError: If connection string is empty
            AuthenticationError: If connection string cannot be parsed
        """
        if not connection_string:
            raise ConfigurationError("AZURE_CONNECTION_STRING is not set")

        try:
            self.service_client = BlobServiceClient.from_connection_string(connection_string)
        except ValueError:
            # Message may echo the connection string
            raise AuthenticationError("Invalid Azure connection string")
        except Exception as e:
            raise StorageError(f"Failed to initialize Azure client: {type(e).__name__}")

    def upload(self, local_path: str, bucket_name: str) -> str:
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = os.path.basename(local_path)

        def _upload():
            try:
                blob_client = self.service_client.get_blob_client(container=bucket_name, blob=key)
                with open(local_path, 'rb') as data:
                    blob_client.upload_blob(data, overwrite=True)
            except Exception as e:
                raise self._translate(e, 'upload', bucket_name, key)

        with_retry(_upload)
        logger.info(f"Uploaded {local_path} to azure://{bucket_name}/{key}")
        return key

    def download(self, remote_key: str, bucket_name: str, local_path: Optional[str] = None) -> str:
        local_path = local_path or _default_download_path(remote_key)

        def _download():
            try:
                blob_client = self.service_client.get_blob_client(container=bucket_name, blob=remote_key)
                stream = blob_client.download_blob()
                with open(local_path, 'wb') as f:
                    stream.readinto(f)
            except Exception as e:
                _remove_partial(local_path)
                raise self._translate(e, 'download', bucket_name, remote_key)

        with_retry(_download)
        logger.info(f"Downloaded azure://{bucket_name}/{remote_key} to {local_path}")
        return local_path

    def list_objects(self, bucket_name: str, prefix: str = '') -> List[Dict[str, Any]]:
        def _list():
            try:
                container = self.service_client.get_container_client(bucket_name)
                return [
                    {'key': blob.name, 'last_modified': blob.last_modified, 'size': blob.size}
                    for blob in container.list_blobs(name_starts_with=prefix or None)
                ]
            except Exception as e:
                raise self._translate(e, 'list', bucket_name, prefix)

        return with_retry(_list)

    def _translate(self, error: Exception, action: str, bucket_name: str, key: str) -> StorageError:
        if isinstance(error, StorageError):
            return error

        location = f"azure://{bucket_name}/{key}"

        if isinstance(error, ResourceNotFoundError):
            return NotFoundError(f"Azure blob or container not found: {location}")
        if isinstance(error, ClientAuthenticationError):
            return AuthenticationError(f"Azure {action} denied for {location}")
        if isinstance(error, (ServiceRequestError, ServiceResponseError)):
            return TransientNetworkError(f"Azure {action} failed, network error: {error}")
        if isinstance(error, AzureError):
            return StorageError(f"Azure {action} failed for {location}: {error}")
        return StorageError(f"Failed to {action} {location}: {error}")


def resolve_cloud_target(target: CloudTarget, cloud_config: CloudConfig) -> Tuple[CloudProvider, str]:
    """
    Resolve the provider and bucket for a transfer.

    Request values win over configuration: the provider falls back to
    CLOUD_PROVIDER, the bucket to the resolved provider's configured bucket.

    Raises:
        ConfigurationError: If the provider is unsupported or no bucket is set
    """
    provider = CloudProvider.parse(target.provider or cloud_config.provider)

    bucket = target.bucket_name
    if not bucket:
        bucket = getattr(cloud_config, provider.value).bucket

    if not bucket:
        raise ConfigurationError(f"Cloud bucket not set for provider {provider.value}")

    return provider, bucket


def create_storage(provider, cloud_config: CloudConfig):
    """
    Factory function to create appropriate storage handler.

    Args:
        provider: CloudProvider or its string value
        cloud_config: Cloud settings

    Returns:
        S3Storage, GCSStorage or AzureBlobStorage instance

    Raises:
        ConfigurationError: If provider is unsupported
    """
    provider = CloudProvider.parse(provider)

    if provider is CloudProvider.S3:
        return S3Storage(
            region=cloud_config.s3.region or 'us-east-1',
            endpoint_url=cloud_config.s3.endpoint_url or None
        )
    elif provider is CloudProvider.GOOGLE:
        return GCSStorage(project_id=cloud_config.google.project_id or None)
    else:
        return AzureBlobStorage(cloud_config.azure.connection_string)
