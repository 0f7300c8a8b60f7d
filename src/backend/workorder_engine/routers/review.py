"""
Review API router: pending signed documents and manual resolution.
"""

from fastapi import APIRouter, HTTPException, Request, UploadFile, File, Form
from typing import Optional

from workorder_engine.models.api import ReviewResolveResponse
from workorder_engine.services.ingestion import SignedDocumentProcessor
from workorder_engine.services.review_queue import ReviewQueue

router = APIRouter(prefix="/review", tags=["review"])


@router.get("/pending")
async def get_pending_reviews(limit: int = 50):
    """
    Signed documents waiting for a human decision.

    Each entry carries the decision reason, the raw OCR confidence and a
    display title and message for the reason.
    """
    try:
        entries = ReviewQueue().list_pending(limit=limit)

        return {
            'entries': entries,
            'total': len(entries)
        }

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch pending reviews: {str(e)}"
        )


@router.post("/{entry_id}/resolve", response_model=ReviewResolveResponse)
async def resolve_review(
    request: Request,
    entry_id: str,
    identifier: str = Form(...),
    file: Optional[UploadFile] = File(None)
):
    """
    Re-decide a review entry with a manually entered work-order number.

    Attach the PDF again to store its artifacts with the work order.
    """
    try:
        if not identifier.strip():
            raise HTTPException(status_code=400, detail="identifier is required")

        pdf_data = await file.read() if file is not None else None

        processor = SignedDocumentProcessor(request.app.state.pdf_engine)
        result = processor.resolve_review(entry_id, identifier, pdf_data)

        if result is None:
            raise HTTPException(
                status_code=404,
                detail=f"Review entry {entry_id} not found"
            )

        return ReviewResolveResponse(
            entry_id=entry_id,
            resolved=result['resolved'],
            status=result['status'],
            reason=result.get('reason'),
            record_key=result.get('record_key'),
            decision=result.get('decision')
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to resolve review: {str(e)}"
        )
