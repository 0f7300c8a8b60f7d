"""
Upload API router for signed work-order PDFs.
"""

from fastapi import APIRouter, HTTPException, Request, UploadFile, File, Form
from typing import Optional
import logging

from workorder_engine.config import settings
from workorder_engine.services.ingestion import SignedDocumentProcessor
from workorder_engine.services.storage import ArtifactStorage

router = APIRouter(prefix="/signed", tags=["signed"])
logger = logging.getLogger(__name__)

ALLOWED_TYPES = ["application/pdf"]


@router.post("/upload")
async def upload_signed_work_order(
    request: Request,
    file: UploadFile = File(...),
    issuer_key: Optional[str] = Form(None),
    sender: Optional[str] = Form(None),
    subject: Optional[str] = Form(None),
    identifier_override: Optional[str] = Form(None)
):
    """
    Upload a signed work-order PDF.

    The document is matched to an issuer, its template region is read, and it
    is either attached to the existing work order or queued for review.

    Args:
        file: Signed PDF
        issuer_key: Explicit issuer (skips sender matching)
        sender: Sender address for issuer matching
        subject: Subject for keyword matching
        identifier_override: Work-order number entered by hand

    Returns:
        Processing result
    """
    try:
        if file.content_type not in ALLOWED_TYPES:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid file type: {file.content_type}. Allowed: PDF"
            )

        file_data = await file.read()
        file_size_mb = len(file_data) / (1024 * 1024)
        limit_mb = settings.MAX_PDF_SIZE_BYTES / (1024 * 1024)

        if len(file_data) > settings.MAX_PDF_SIZE_BYTES:
            raise HTTPException(
                status_code=400,
                detail=f"File too large: {file_size_mb:.2f}MB. Maximum: {limit_mb:.0f}MB"
            )

        processor = SignedDocumentProcessor(request.app.state.pdf_engine)
        result = processor.process_document(
            file_data,
            file.filename or "signed_work_order.pdf",
            source="signed_upload",
            issuer_key=issuer_key,
            sender=sender,
            subject=subject,
            identifier_override=identifier_override
        )

        if result.get('signed_pdf_path'):
            signed_url = ArtifactStorage().signed_url(result['signed_pdf_path'], expires_in=3600)
            if signed_url:
                result['file_url'] = signed_url

        logger.info("Signed upload processed", extra={
            "filename": file.filename,
            "status": result['status'],
            "reason": result.get('reason')
        })
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Signed upload failed", extra={
            "filename": file.filename if file else None,
            "error": str(e)
        }, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Upload failed: {str(e)}"
        )
