"""
Upload service for validating, processing and storing image uploads.

Images are checked for size and type, normalized to RGB, scaled down so the
longest side fits MAX_IMAGE_DIMENSION, re-encoded as JPEG and stored in S3.
The public URL is what clients put into profile_image / team or event fields.
"""

import logging
import os
import uuid
from io import BytesIO
from typing import Optional

from PIL import Image

from picklehub.services.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Validation constants
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB
MAX_IMAGE_PIXELS = 40_000_000  # decompression bomb guard
MAX_IMAGE_DIMENSION = 1600
JPEG_QUALITY = 85
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}

Image.MAX_IMAGE_PIXELS = MAX_IMAGE_PIXELS

# Lazy-initialized S3 client
_s3_client = None


def _get_config():
    """Read S3 configuration from environment at call time (not import time)."""
    return {
        "access_key_id": os.getenv("AWS_ACCESS_KEY_ID"),
        "secret_access_key": os.getenv("AWS_SECRET_ACCESS_KEY"),
        "bucket": os.getenv("AWS_S3_BUCKET"),
        "region": os.getenv("AWS_S3_REGION", "ap-northeast-1"),
    }


def _get_s3_client():
    """Get or create the boto3 S3 client."""
    global _s3_client
    if _s3_client is None:
        cfg = _get_config()
        if not all([cfg["access_key_id"], cfg["secret_access_key"], cfg["bucket"]]):
            raise ValueError(
                "AWS S3 environment variables not configured. "
                "Set AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, and AWS_S3_BUCKET."
            )
        import boto3

        _s3_client = boto3.client(
            "s3",
            aws_access_key_id=cfg["access_key_id"],
            aws_secret_access_key=cfg["secret_access_key"],
            region_name=cfg["region"],
        )
    return _s3_client


def validate_image(file_bytes: bytes, content_type: Optional[str]) -> None:
    """
    Validate an uploaded image.

    Raises:
        ValidationError: Empty, too large, wrong type, or not a readable image
    """
    if not file_bytes:
        raise ValidationError("Uploaded file is empty")

    if len(file_bytes) > MAX_FILE_SIZE_BYTES:
        raise ValidationError(
            f"File size exceeds maximum of {MAX_FILE_SIZE_BYTES // (1024 * 1024)}MB"
        )

    if not content_type or content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(f"Invalid file type '{content_type}'. Allowed: JPEG, PNG, WebP, HEIC")

    try:
        img = Image.open(BytesIO(file_bytes))
        width, height = img.size
        if width * height > MAX_IMAGE_PIXELS:
            raise ValidationError(f"Image dimensions too large ({width}x{height})")
        img.verify()
    except ValidationError:
        raise
    except Image.DecompressionBombError:
        raise ValidationError("Image dimensions too large (possible decompression bomb)")
    except Exception as e:
        raise ValidationError(f"Invalid or corrupted image file: {str(e)}")


def process_image(image_bytes: bytes) -> bytes:
    """
    Convert to RGB, fit within MAX_IMAGE_DIMENSION keeping aspect ratio, compress as JPEG.
    """
    img = Image.open(BytesIO(image_bytes))

    # Flatten transparency onto white
    if img.mode in ("RGBA", "P", "LA"):
        background = Image.new("RGB", img.size, (255, 255, 255))
        if img.mode == "P":
            img = img.convert("RGBA")
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")

    if max(img.size) > MAX_IMAGE_DIMENSION:
        img.thumbnail((MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION), Image.Resampling.LANCZOS)

    output = BytesIO()
    img.save(output, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    return output.getvalue()


def upload_bytes(key: str, file_bytes: bytes, content_type: str = "image/jpeg") -> str:
    """
    Store bytes in S3 under ``key``.

    Returns:
        Public URL of the stored object
    """
    client = _get_s3_client()
    cfg = _get_config()
    bucket = cfg["bucket"]
    region = cfg["region"]

    client.put_object(
        Bucket=bucket,
        Key=key,
        Body=file_bytes,
        ContentType=content_type,
    )

    url = f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
    logger.info(f"Uploaded file to S3: {key}")
    return url


def upload_image(user_id: int, file_bytes: bytes, content_type: Optional[str]) -> str:
    """
    Validate, process and store an image uploaded by a user.

    Stored at key: uploads/{user_id}/{uuid}.jpg

    Returns:
        Public URL of the uploaded image

    Raises:
        ValidationError: If the file is not an acceptable image
    """
    validate_image(file_bytes, content_type)
    processed = process_image(file_bytes)
    key = f"uploads/{user_id}/{uuid.uuid4().hex}.jpg"
    return upload_bytes(key, processed)
