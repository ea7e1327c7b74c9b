"""Public contact form endpoint."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from career_compass.core.database import get_db
from career_compass.core.messages import message_for
from career_compass.features.contact.service import submit_contact_message

router = APIRouter(prefix="/api/contact", tags=["contact"])


class ContactRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    category: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    urgent: bool = False


@router.post("")
def post_contact(body: ContactRequest, db: Session = Depends(get_db)):
    row = submit_contact_message(
        db,
        name=body.name,
        email=body.email,
        category=body.category,
        subject=body.subject,
        message=body.message,
        urgent=body.urgent,
    )
    return {"success": True, "message": message_for("contact_received"), "id": row["id"]}
