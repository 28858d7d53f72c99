# Overview: Service-layer operations for document numbering; allocates per-location sequence numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .errors import ValidationError

DOCUMENT_TYPE_INVOICE = "INVOICE"


def _current_number(location_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(location_id=location_id, document_type=document_type)
        .scalar()
    )


def next_document_number(
    *,
    location_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a location/type.

    Runs inside the caller's transaction: the UPDATE takes the sequence row
    lock until commit, so a rolled-back sale releases its number.
    """
    if not location_id:
        raise ValidationError("location_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.location_id == location_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(location_id, document_type) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(location_id=location_id, document_type=document_type, next_number=2)
                )
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(location_id, document_type) - 1

    return f"{prefix}-{location_id}-{next_num:0{pad}d}"
