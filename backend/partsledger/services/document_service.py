# Overview: Document number sequences for intakes, returns, adjustments, quotations and credits.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError
from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


DOCUMENT_PREFIXES = {
    "intake": "ING",
    "return": "DEV",
    "adjustment": "AJU",
    "quotation": "COT",
    "credit": "CRE",
}


def next_document_number(*, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next document number for a document type.

    Runs inside the caller's transaction (no commit): the number is only
    consumed if the document that uses it is committed. Concurrent callers
    collide on the UPDATE and are retried by the caller's coordinator.
    """
    if document_type not in DOCUMENT_PREFIXES:
        raise DocumentSequenceError(f"Unknown document_type '{document_type}'")
    prefix = DOCUMENT_PREFIXES[document_type]

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another transaction created the sequence row first
            raise ConflictError(f"Concurrent {document_type} numbering, retry the operation") from exc
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
