"""Contact form submissions."""
import logging
import re
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from career_compass.core.database import contact_messages
from career_compass.core.errors import ValidationError

logger = logging.getLogger("career_compass")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def submit_contact_message(
    db: Session,
    *,
    name: Optional[str],
    email: Optional[str],
    category: Optional[str],
    subject: Optional[str],
    message: Optional[str],
    urgent: bool = False,
) -> RowMapping:
    fields = {"name": name, "email": email, "category": category, "subject": subject, "message": message}
    if any(not (value or "").strip() for value in fields.values()):
        raise ValidationError(code="missing_fields")
    if not EMAIL_RE.match(email.strip()):
        raise ValidationError(code="invalid_email")

    row = db.execute(
        insert(contact_messages)
        .values(
            **{k: v.strip() for k, v in fields.items()},
            urgent=bool(urgent),
            status="urgent" if urgent else "unread",
        )
        .returning(contact_messages)
    ).mappings().one()
    db.commit()
    logger.info("[contact] message received", extra={"contact_id": row["id"], "category": row["category"], "urgent": row["urgent"]})
    return row
