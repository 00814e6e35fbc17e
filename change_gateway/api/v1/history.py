"""GET /v1/change-requests/{id}/history - Audited transitions of a change request"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from change_gateway.api.v1.schemas import HistoryResponse, HistoryItem
from change_gateway.domain.exceptions import NotFound
from change_gateway.infrastructure.database.session import get_db
from change_gateway.infrastructure.database.repositories import ChangeRequestRepository
from change_gateway.services.controller import parse_request_id

router = APIRouter()


@router.get("/change-requests/{request_id}/history", response_model=HistoryResponse)
def get_change_request_history(request_id: str, db: Session = Depends(get_db)):
    """
    Retrieve every transition recorded for a change request.

    Returns:
        Events oldest first, starting with the open
    """
    try:
        record_id = parse_request_id(request_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Change request not found")

    repo = ChangeRequestRepository(db)
    if repo.get(record_id) is None:
        raise HTTPException(status_code=404, detail="Change request not found")

    events = [
        HistoryItem(
            from_status=e.from_status,
            to_status=e.to_status,
            actor=e.actor,
            detail=e.detail,
            created_at=e.created_at.isoformat(),
        )
        for e in repo.events_for(record_id)
    ]

    return HistoryResponse(change_request_id=str(record_id), events=events)
