"""Image upload route handlers."""

import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from picklehub.api.routes import limiter
from picklehub.services import upload_service
from picklehub.services.exceptions import PickleHubError
from picklehub.api.auth_dependencies import get_current_user
from picklehub.models.schemas import UploadResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/upload/image", response_model=UploadResponse)
@limiter.limit("10/minute")
async def upload_image(
    request: Request,
    file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
):
    """
    Upload an image (profile picture, team icon/header).

    Accepts JPEG, PNG, WebP, or HEIC images up to 10MB. The image is
    re-encoded as JPEG and stored in S3.

    Returns:
        { "url": "<s3_url>" }
    """
    try:
        file_bytes = await file.read()
        loop = asyncio.get_running_loop()
        url = await loop.run_in_executor(
            None, upload_service.upload_image, current_user["id"], file_bytes, file.content_type
        )
        return {"url": url}
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error uploading image: {e}")
        raise HTTPException(status_code=500, detail="Error uploading image")
