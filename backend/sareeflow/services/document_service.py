# Overview: Document number allocation for orders and purchase orders.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next document number for a document type.

    Runs inside the caller's unit of work (no commit); the UPDATE takes the
    row lock, so concurrent callers serialize on the sequence row.
    """
    if not document_type:
        raise ValueError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return f"{prefix}-{1:0{pad}d}"
        except IntegrityError:
            # Another writer created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return f"{prefix}-{current - 1:0{pad}d}"


def next_unused_document_number(*, document_type: str, prefix: str, column, pad: int = 6) -> str:
    """
    Allocate the next number that is not already taken in `column`.

    Numbers supplied by callers can land on the sequence; those are skipped
    and the sequence moves past them in the same unit of work.
    """
    while True:
        number = next_document_number(document_type=document_type, prefix=prefix, pad=pad)
        if db.session.query(column).filter(column == number).first() is None:
            return number
