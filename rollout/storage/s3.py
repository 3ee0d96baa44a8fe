#!/usr/bin/env python3
"""S3 storage backend for production mode."""

import os

import boto3

from .base import StorageBackend
from ..deployment.errors import ConfigError


class S3Storage(StorageBackend):
    """S3 storage backend for production mode."""

    def __init__(self, config):
        self.bucket = config.get('bucket_name')
        self.region = config.get('region', 'us-east-1')
        self.endpoint_url = config.get('endpoint_url')
        self.prefix = config.get('prefix', 'deployments/')

        self._validate_credentials()
        self._client = None

    def _validate_credentials(self):
        """Validate required AWS credentials are set."""
        if not self.bucket:
            raise ConfigError("s3.bucket_name is required for the s3 storage backend")

        missing = [name for name in ('AWS_ACCESS_KEY_ID', 'AWS_SECRET_ACCESS_KEY') if name not in os.environ]
        if missing:
            raise ConfigError(f"Missing environment variables: {', '.join(missing)}")

    def _get_client(self):
        """Lazy initialization of boto3 client."""
        if self._client is None:
            self._client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=os.environ['AWS_ACCESS_KEY_ID'],
                aws_secret_access_key=os.environ['AWS_SECRET_ACCESS_KEY'],
                region_name=self.region
            )
        return self._client

    def _key(self, storage_key):
        return f"{self.prefix}{storage_key}"

    def _get_s3_url(self, key):
        return f"s3://{self.bucket}/{key}"

    def upload_file(self, local_path, storage_key):
        key = self._key(storage_key)
        print(f"Uploading to S3: {self._get_s3_url(key)}")
        self._get_client().upload_file(str(local_path), self.bucket, key)
        print("[OK] Uploaded")
        return self._get_s3_url(key)
