"""Upload proxy: staff upload images through the API instead of to storage directly."""
from fastapi import APIRouter, HTTPException, Depends, UploadFile, File, Form
from typing import Optional
from middleware import require_auth, RequestContext
from services.upload_proxy import upload_file, UploadError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/uploads", tags=["uploads"])


@router.post("")
async def upload(
    file: UploadFile = File(...),
    path: str = Form(...),
    type: Optional[str] = Form(None),
    ctx: RequestContext = Depends(require_auth),
):
    content = await file.read()
    try:
        url = await upload_file(
            content,
            path,
            content_type=type or file.content_type,
            token=ctx.token,
        )
    except UploadError as e:
        raise HTTPException(
            status_code=e.status_code if e.status_code in (400, 504) else 502,
            detail=f"Storage API Error: {e.detail}",
        )
    return {"download_url": url}
