"""
Tests for upload_service: validation, image processing, and S3 storage with mocked boto3.
"""

from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from picklehub.services import upload_service
from picklehub.services.exceptions import ValidationError

S3_ENV = {
    "AWS_ACCESS_KEY_ID": "test-key",
    "AWS_SECRET_ACCESS_KEY": "test-secret",
    "AWS_S3_BUCKET": "test-bucket",
    "AWS_S3_REGION": "ap-northeast-1",
}


def _make_image(width=100, height=100, fmt="JPEG", mode="RGB"):
    """Create a minimal test image and return its bytes."""
    color = (255, 0, 0, 128) if mode == "RGBA" else (255, 0, 0)
    img = Image.new(mode, (width, height), color=color)
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


# ============================================================================
# validate_image
# ============================================================================


class TestValidateImage:
    """Tests for validate_image()."""

    def test_valid_jpeg(self):
        upload_service.validate_image(_make_image(fmt="JPEG"), "image/jpeg")

    def test_valid_png(self):
        upload_service.validate_image(_make_image(fmt="PNG"), "image/png")

    def test_empty_file(self):
        with pytest.raises(ValidationError, match="empty"):
            upload_service.validate_image(b"", "image/jpeg")

    def test_wrong_content_type(self):
        with pytest.raises(ValidationError, match="Invalid file type"):
            upload_service.validate_image(_make_image(), "application/pdf")

    def test_too_large(self):
        data = b"\x00" * (upload_service.MAX_FILE_SIZE_BYTES + 1)
        with pytest.raises(ValidationError, match="exceeds maximum"):
            upload_service.validate_image(data, "image/jpeg")

    def test_corrupted_image(self):
        with pytest.raises(ValidationError, match="corrupted"):
            upload_service.validate_image(b"definitely not an image", "image/jpeg")


# ============================================================================
# process_image
# ============================================================================


class TestProcessImage:
    """Tests for process_image()."""

    def test_output_is_jpeg(self):
        result = upload_service.process_image(_make_image(fmt="PNG"))
        assert Image.open(BytesIO(result)).format == "JPEG"

    def test_large_image_is_scaled_down(self):
        result = upload_service.process_image(_make_image(width=3200, height=1600))
        img = Image.open(BytesIO(result))
        assert img.size == (1600, 800)

    def test_small_image_keeps_size(self):
        result = upload_service.process_image(_make_image(width=300, height=200))
        assert Image.open(BytesIO(result)).size == (300, 200)

    def test_transparency_flattened(self):
        result = upload_service.process_image(_make_image(fmt="PNG", mode="RGBA"))
        assert Image.open(BytesIO(result)).mode == "RGB"


# ============================================================================
# upload_image (mocked S3)
# ============================================================================


class TestUploadImage:
    """Tests for upload_image() with mocked boto3."""

    @patch.dict("os.environ", S3_ENV)
    @patch("picklehub.services.upload_service._get_s3_client")
    def test_upload_returns_url(self, mock_get_client):
        mock_client = MagicMock()
        mock_get_client.return_value = mock_client

        url = upload_service.upload_image(42, _make_image(), "image/jpeg")

        assert url.startswith("https://test-bucket.s3.ap-northeast-1.amazonaws.com/uploads/42/")
        assert url.endswith(".jpg")
        mock_client.put_object.assert_called_once()
        assert mock_client.put_object.call_args.kwargs["ContentType"] == "image/jpeg"

    @patch("picklehub.services.upload_service._get_s3_client")
    def test_invalid_image_is_not_uploaded(self, mock_get_client):
        with pytest.raises(ValidationError):
            upload_service.upload_image(42, b"garbage", "image/jpeg")
        mock_get_client.assert_not_called()

    def test_missing_configuration(self, monkeypatch):
        monkeypatch.setattr(upload_service, "_s3_client", None)
        monkeypatch.delenv("AWS_ACCESS_KEY_ID", raising=False)
        monkeypatch.delenv("AWS_S3_BUCKET", raising=False)
        with pytest.raises(ValueError, match="not configured"):
            upload_service.upload_bytes("uploads/1/x.jpg", b"data")
