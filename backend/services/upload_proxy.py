"""
Upload Proxy
Forwards staff uploads (sampler and reference images) to blob storage and
returns the public download URL.

BLOB_UPLOAD_URLS may list several comma-separated endpoints; the next one is
tried only when an endpoint answers 400 or 404.
"""
import os
import logging
import httpx
from typing import Optional, List
from urllib.parse import quote

logger = logging.getLogger(__name__)

BLOB_UPLOAD_URLS = [
    u.strip() for u in os.getenv("BLOB_UPLOAD_URLS", os.getenv("BLOB_UPLOAD_URL", "")).split(",") if u.strip()
]
BLOB_PUBLIC_URL = os.getenv("BLOB_PUBLIC_URL", "")
UPLOAD_TIMEOUT_SECONDS = float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "60"))

RETRYABLE_STATUSES = {400, 404}


class UploadError(Exception):
    """Blob storage rejected or never answered the upload. Carries the upstream status and text."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Storage API Error ({status_code}): {detail}")


def _download_url(upload_url: str, path: str, download_token: Optional[str]) -> str:
    base = BLOB_PUBLIC_URL or upload_url
    url = f"{base.rstrip('/')}/{quote(path, safe='')}?alt=media"
    if download_token:
        url += f"&token={download_token}"
    return url


async def upload_file(
    content: bytes,
    path: str,
    content_type: Optional[str] = None,
    token: Optional[str] = None,
    upload_urls: Optional[List[str]] = None,
) -> str:
    """
    Upload bytes to blob storage under path. Returns the download URL.
    Raises UploadError with the storage API's own error text on failure.
    """
    if not path:
        raise UploadError(400, "Missing file path")
    endpoints = upload_urls or BLOB_UPLOAD_URLS
    if not endpoints:
        raise UploadError(500, "Blob storage is not configured")

    headers = {"Content-Type": content_type or "application/octet-stream"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    last_status = 500
    last_error = ""
    async with httpx.AsyncClient(timeout=UPLOAD_TIMEOUT_SECONDS) as client:
        for endpoint in endpoints:
            try:
                response = await client.post(
                    endpoint,
                    params={"name": path},
                    content=content,
                    headers=headers,
                )
            except httpx.TimeoutException as e:
                logger.error(f"Upload to {endpoint} timed out after {UPLOAD_TIMEOUT_SECONDS}s")
                raise UploadError(504, f"Upload timed out: {e}") from e
            except httpx.HTTPError as e:
                logger.error(f"Upload to {endpoint} failed: {e}")
                raise UploadError(502, str(e)) from e

            if response.is_success:
                data = response.json() if response.content else {}
                url = _download_url(endpoint, path, data.get("downloadTokens"))
                logger.info(f"Uploaded {path} ({len(content)} bytes)")
                return url

            last_status = response.status_code
            last_error = response.text
            logger.error(f"Failed upload to {endpoint}: {last_status} - {last_error}")
            if last_status not in RETRYABLE_STATUSES:
                break

    raise UploadError(last_status, last_error)
