"""
S3 storage client with ETag support and conditional writes.

Used by the checkpoint store when STORAGE_BACKEND=s3. Works against MinIO
(path-style addressing) and AWS S3.
"""

import os
import json
from typing import Optional, Dict

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from loguru import logger


class S3Client:
    """
    Thin S3 wrapper exposing JSON get/put with ETag preconditions.
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        bucket: Optional[str] = None,
        region: str = "us-east-1",
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        force_path_style: bool = True,
        client=None,
    ):
        """
        Initialize S3 client.

        Args:
            endpoint_url: S3 endpoint (e.g., http://minio:9000)
            bucket: Default bucket name
            region: AWS region
            access_key: AWS/MinIO access key
            secret_key: AWS/MinIO secret key
            force_path_style: Use path-style addressing (required for MinIO)
            client: Pre-built boto3 S3 client (skips client construction)
        """
        self.endpoint_url = endpoint_url or os.getenv("S3_ENDPOINT")
        self.bucket = bucket or os.getenv("S3_BUCKET", "index-sync")
        self.region = region or os.getenv("S3_REGION", "us-east-1")

        if client is None:
            config = Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path' if force_path_style else 'virtual'}
            )
            client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                region_name=self.region,
                aws_access_key_id=access_key or os.getenv("AWS_ACCESS_KEY_ID"),
                aws_secret_access_key=secret_key or os.getenv("AWS_SECRET_ACCESS_KEY"),
                config=config
            )
        self.s3 = client

        logger.info(f"S3Client initialized: endpoint={self.endpoint_url}, bucket={self.bucket}")

    def put_object(
        self,
        key: str,
        data: bytes,
        if_match: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Upload object, optionally only if the stored ETag still matches.

        Returns:
            ETag of uploaded object

        Raises:
            ClientError: If conditional write fails or other S3 error
        """
        kwargs = {
            'Bucket': self.bucket,
            'Key': key,
            'Body': data,
        }
        if if_match:
            kwargs['IfMatch'] = if_match
        if metadata:
            kwargs['Metadata'] = metadata
        if content_type:
            kwargs['ContentType'] = content_type

        try:
            response = self.s3.put_object(**kwargs)
            etag = response['ETag'].strip('"')
            logger.debug(f"Put object: s3://{self.bucket}/{key} (ETag: {etag})")
            return etag
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'PreconditionFailed':
                logger.warning(f"Conditional write failed for s3://{self.bucket}/{key}: {e}")
            raise

    def get_object(self, key: str) -> tuple[bytes, str]:
        """
        Download object.

        Returns:
            Tuple of (data, etag)

        Raises:
            ClientError: If object not found or other S3 error
        """
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            data = response['Body'].read()
            etag = response['ETag'].strip('"')
            logger.debug(f"Got object: s3://{self.bucket}/{key} ({len(data)} bytes)")
            return data, etag
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'NoSuchKey':
                logger.debug(f"Object not found: s3://{self.bucket}/{key}")
            raise

    def put_json(self, key: str, data: dict, if_match: Optional[str] = None) -> str:
        """Upload JSON object."""
        json_bytes = json.dumps(data, indent=2).encode('utf-8')
        return self.put_object(
            key=key,
            data=json_bytes,
            if_match=if_match,
            content_type='application/json',
        )

    def get_json(self, key: str) -> tuple[dict, str]:
        """Download and parse JSON object."""
        data, etag = self.get_object(key)
        return json.loads(data.decode('utf-8')), etag


def get_s3_client() -> S3Client:
    """Factory function to create S3 client from environment."""
    return S3Client(
        endpoint_url=os.getenv("S3_ENDPOINT"),
        bucket=os.getenv("S3_BUCKET", "index-sync"),
        region=os.getenv("S3_REGION", "us-east-1"),
        access_key=os.getenv("AWS_ACCESS_KEY_ID"),
        secret_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        force_path_style=os.getenv("S3_FORCE_PATH_STYLE", "true").lower() == "true",
    )
