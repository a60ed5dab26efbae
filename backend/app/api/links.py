"""Public tracking redirect for affiliate links"""
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.services.link_service import record_click

router = APIRouter(tags=["links"])


@router.get("/r/{link_id}")
def follow_link(link_id: int, db: Session = Depends(get_db)):
    """Count the click and redirect to the link's destination"""
    destination_url = record_click(link_id, db)
    return RedirectResponse(destination_url, status_code=307)
