"""
Object Storage Service for S3-compatible storage (MinIO, AWS S3, DigitalOcean Spaces).

Holds payment-proof images. Proofs arrive as base64 data URLs, are
re-encoded to WebP with Pillow and stored under PROOF_PREFIX.
"""
import base64
import binascii
import json
import logging
import re
from io import BytesIO
from typing import Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError
from flask import current_app
from PIL import Image, UnidentifiedImageError

from app.exceptions import ValidationError

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r'^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$', re.DOTALL)


class StorageService:
    """
    S3-compatible object storage service.

    Usage:
        storage = StorageService()
        storage.upload_bytes(data, 'proof/1/order_ORD-1.webp', 'image/webp')
        storage.delete_file('proof/1/order_ORD-1.webp')
    """

    def __init__(self):
        """Initialize S3 client from Flask config."""
        self.endpoint = current_app.config['S3_ENDPOINT']
        self.bucket = current_app.config['S3_BUCKET']
        self.public_url = current_app.config['S3_PUBLIC_URL']

        self.client = boto3.client(
            's3',
            endpoint_url=self.endpoint,
            aws_access_key_id=current_app.config['S3_ACCESS_KEY'],
            aws_secret_access_key=current_app.config['S3_SECRET_KEY'],
            region_name=current_app.config['S3_REGION'],
            config=BotoConfig(signature_version='s3v4')
        )

        self._ensure_bucket_exists()

    def _ensure_bucket_exists(self):
        """Create bucket if it doesn't exist."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code != '404':
                logger.error(f"[STORAGE] ✗ Failed to check bucket: {e}")
                raise
            self.client.create_bucket(Bucket=self.bucket)
            policy = {
                "Version": "2012-10-17",
                "Statement": [{
                    "Effect": "Allow",
                    "Principal": {"AWS": "*"},
                    "Action": "s3:GetObject",
                    "Resource": f"arn:aws:s3:::{self.bucket}/*"
                }]
            }
            self.client.put_bucket_policy(Bucket=self.bucket, Policy=json.dumps(policy))
            logger.info(f"[STORAGE] ✓ Bucket '{self.bucket}' created")

    def upload_bytes(self, data: bytes, object_name: str, content_type: str,
                     metadata: Optional[dict] = None) -> str:
        """Upload raw bytes and return the object key."""
        extra_args = {'ContentType': content_type}
        if metadata:
            extra_args['Metadata'] = metadata

        try:
            self.client.upload_fileobj(BytesIO(data), self.bucket, object_name, ExtraArgs=extra_args)
        except ClientError as e:
            logger.exception(f"[STORAGE] ✗ Upload failed: {e}")
            raise
        logger.info(f"[STORAGE] ✓ Uploaded '{object_name}' ({len(data)} bytes)")
        return object_name

    def delete_file(self, object_name: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=object_name)
            logger.info(f"[STORAGE] ✓ File deleted: {object_name}")
            return True
        except ClientError as e:
            logger.exception(f"[STORAGE] ✗ Delete failed: {e}")
            return False

    def get_public_url(self, object_name: str) -> str:
        return f"{self.public_url}/{self.bucket}/{object_name}"


# Singleton instance
_storage_service = None


def get_storage_service() -> StorageService:
    """Get or create StorageService singleton."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service


def decode_image_data_url(data_url: str) -> bytes:
    """
    Decode a `data:image/...;base64,` URL and validate type and size.

    Raises:
        ValidationError: malformed URL, disallowed type or too large
    """
    if not isinstance(data_url, str):
        raise ValidationError('Format bukti pembayaran tidak valid')
    match = DATA_URL_RE.match(data_url.strip())
    if not match:
        raise ValidationError('Format bukti pembayaran tidak valid')

    mime = match.group('mime').lower()
    allowed_types = current_app.config.get('ALLOWED_MIME_TYPES', set())
    if allowed_types and mime not in allowed_types:
        raise ValidationError(f'Tipe file tidak diizinkan: {mime}')

    try:
        raw = base64.b64decode(match.group('data'), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError('Format bukti pembayaran tidak valid')

    max_size = current_app.config.get('MAX_UPLOAD_SIZE', 5 * 1024 * 1024)
    if len(raw) > max_size:
        raise ValidationError(f'Ukuran file maksimal {max_size / (1024 * 1024):.1f}MB')
    return raw


def convert_to_webp(raw: bytes, quality: int = 80) -> bytes:
    """Re-encode any Pillow-readable image to WebP."""
    try:
        img = Image.open(BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationError('File bukti pembayaran bukan gambar yang valid')

    if img.mode not in ('RGB', 'RGBA'):
        img = img.convert('RGBA' if 'A' in img.getbands() else 'RGB')

    output = BytesIO()
    img.save(output, format='WEBP', quality=quality)
    return output.getvalue()


def proof_object_name(tenant_id: int, order_number: str) -> str:
    prefix = current_app.config.get('PROOF_PREFIX', 'proof').strip('/')
    return f"{prefix}/{tenant_id}/order_{order_number}.webp"


def save_proof_base64(data_url: str, order_number: str, tenant_id: int) -> str:
    """
    Store a payment proof for an order and return its object key.

    The same order always maps to the same key, so a re-upload replaces
    the previous proof.
    """
    webp = convert_to_webp(decode_image_data_url(data_url))
    object_name = proof_object_name(tenant_id, order_number)
    return get_storage_service().upload_bytes(
        webp, object_name, 'image/webp', metadata={'order-number': order_number}
    )
