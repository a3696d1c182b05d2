from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

router = APIRouter()


class ReviewRecordOut(BaseModel):
    timestamp: str
    sender: str
    sender_name: str
    subject: str
    body: str
    keywords: List[str]
    reason: str
    draft_reply: str


@router.get("/reviews")
def list_reviews(request: Request, limit: int = Query(50, ge=1, le=500)) -> dict:
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Review ledger is not configured.")
    records = components.ledger.read_all()
    # Newest first, as operators work the queue from the top.
    newest = list(reversed(records))[:limit]
    items = [ReviewRecordOut(**record.to_dict()) for record in newest]
    return {"ok": True, "total": len(records), "reviews": [item.model_dump() for item in items]}
