# Overview: Service-layer operations for document sequences; allocates human-facing references.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def allocate_document_number(*, document_type: str) -> int:
    """
    Atomically allocate the next number for a document type.

    Runs inside the caller's transaction: the UPDATE takes the write lock on
    the sequence row, so two concurrent callers never receive the same number.
    The caller owns commit/retry.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        # First use of this sequence; a concurrent first use loses on the
        # unique constraint and falls back to the UPDATE path.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate {document_type} number")

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_order_reference(prefix: str, *, pad: int = 6) -> str:
    """Allocate an order reference such as ORD-000123."""
    number = allocate_document_number(document_type="order")
    return f"{prefix}-{number:0{pad}d}"
