"""
File Storage
S3 uploads for trade screenshots and attachments.
Clients upload directly to S3 with a presigned URL; keys are scoped per user.
"""
import re
import time
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

import auth
import config
import models

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])

_client = None


class StorageError(Exception):
    """S3 call failed."""


def get_client():
    """Lazily build the S3 client so a missing bucket never breaks startup."""
    global _client
    if _client is None:
        kwargs = {"region_name": config.AWS_REGION}
        if config.AWS_ACCESS_KEY_ID and config.AWS_SECRET_ACCESS_KEY:
            kwargs["aws_access_key_id"] = config.AWS_ACCESS_KEY_ID
            kwargs["aws_secret_access_key"] = config.AWS_SECRET_ACCESS_KEY
        _client = boto3.client("s3", **kwargs)
    return _client


def public_url(key: str) -> str:
    return f"https://{config.AWS_S3_BUCKET_NAME}.s3.{config.AWS_REGION}.amazonaws.com/{key}"


def upload_file(key: str, body: bytes, content_type: str) -> str:
    try:
        get_client().put_object(
            Bucket=config.AWS_S3_BUCKET_NAME,
            Key=key,
            Body=body,
            ContentType=content_type,
            Metadata={"uploadedAt": datetime.now(timezone.utc).isoformat()},
        )
    except (ClientError, BotoCoreError) as e:
        logger.error("Error uploading %s to S3: %s", key, e)
        raise StorageError(f"Failed to upload file: {e}") from e
    return public_url(key)


def get_upload_url(key: str, expires_in: int = 3600, content_type: Optional[str] = None) -> str:
    params = {"Bucket": config.AWS_S3_BUCKET_NAME, "Key": key}
    if content_type:
        params["ContentType"] = content_type
    try:
        return get_client().generate_presigned_url("put_object", Params=params, ExpiresIn=expires_in)
    except (ClientError, BotoCoreError) as e:
        logger.error("Error generating upload URL for %s: %s", key, e)
        raise StorageError(f"Failed to generate upload URL: {e}") from e


def get_download_url(key: str, expires_in: int = 3600) -> str:
    try:
        return get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": config.AWS_S3_BUCKET_NAME, "Key": key},
            ExpiresIn=expires_in,
        )
    except (ClientError, BotoCoreError) as e:
        logger.error("Error generating download URL for %s: %s", key, e)
        raise StorageError(f"Failed to generate download URL: {e}") from e


def delete_file(key: str) -> bool:
    try:
        get_client().delete_object(Bucket=config.AWS_S3_BUCKET_NAME, Key=key)
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error("Error deleting %s from S3: %s", key, e)
        return False


def get_file_metadata(key: str) -> dict:
    try:
        head = get_client().head_object(Bucket=config.AWS_S3_BUCKET_NAME, Key=key)
    except (ClientError, BotoCoreError) as e:
        logger.error("Error reading metadata for %s: %s", key, e)
        raise StorageError(f"Failed to get file metadata: {e}") from e
    return {
        "content_type": head.get("ContentType"),
        "content_length": head.get("ContentLength"),
        "last_modified": head.get("LastModified"),
        "metadata": head.get("Metadata", {}),
    }


def sanitize_file_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.\-]", "_", name)


def user_prefix(user_id: str) -> str:
    return f"uploads/{user_id}/"


# Pydantic Models
class UploadRequest(BaseModel):
    file_name: Optional[str] = None
    file_type: Optional[str] = None


def _require_storage():
    if not config.AWS_S3_BUCKET_NAME:
        raise HTTPException(status_code=501, detail="File storage not configured")


def _require_owned_key(file_key: Optional[str], user: models.User) -> str:
    if not file_key:
        raise HTTPException(status_code=400, detail="File key is required")
    if not file_key.startswith(user_prefix(user.id)) or ".." in file_key:
        raise HTTPException(status_code=403, detail="Access denied")
    return file_key


def _expires_at(seconds: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


# --- API Endpoints ---

@router.post("/file-upload-url")
def create_upload_url(req: UploadRequest, current_user: models.User = Depends(auth.get_current_user)):
    _require_storage()
    if not req.file_name or not req.file_name.strip():
        raise HTTPException(status_code=400, detail="File name is required")

    key = f"{user_prefix(current_user.id)}{int(time.time() * 1000)}-{sanitize_file_name(req.file_name.strip())}"
    try:
        url = get_upload_url(key, config.UPLOAD_URL_EXPIRES, req.file_type)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {"upload_url": url, "file_key": key, "expires_at": _expires_at(config.UPLOAD_URL_EXPIRES)}


@router.get("/file-download-url")
def create_download_url(file_key: Optional[str] = None, current_user: models.User = Depends(auth.get_current_user)):
    _require_storage()
    key = _require_owned_key(file_key, current_user)
    try:
        url = get_download_url(key, config.UPLOAD_URL_EXPIRES)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"download_url": url, "expires_at": _expires_at(config.UPLOAD_URL_EXPIRES)}


@router.delete("/files")
def remove_file(file_key: Optional[str] = None, current_user: models.User = Depends(auth.get_current_user)):
    _require_storage()
    key = _require_owned_key(file_key, current_user)
    if not delete_file(key):
        raise HTTPException(status_code=500, detail="Failed to delete file")
    logger.info("Deleted %s", key)
    return {"message": "File deleted successfully"}
