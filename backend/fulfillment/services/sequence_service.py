# Overview: Service-layer operations for document numbering; order and receipt numbers.

"""
Sequence Generators

Formats:
    ORD-YYYYMMDD-NNNNN-XXX   (XXX: random [0-9A-Z] suffix)
    RCP-YYYYMMDD-NNNNN

Numbers come from one counter row per (document_type, day), bumped with
an atomic UPDATE inside the caller's transaction. The first allocation of a
day inserts the row inside a SAVEPOINT; losing that insert race to another
transaction rolls back only the savepoint and falls back to the UPDATE.
Counter rows roll back together with the document that used them, so a
failed order does not burn a number.
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import date_stamp, utcnow


DOC_ORDER = "ORDER"
DOC_RECEIPT = "RECEIPT"

SEQUENCE_PAD = 5
SUFFIX_ALPHABET = string.digits + string.ascii_uppercase
SUFFIX_LENGTH = 3


def _bump(document_type: str, day: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.sequence_date == day,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, sequence_date=day)
        .scalar()
    )
    return current - 1


def allocate_sequence_number(document_type: str, day: str) -> int:
    """Next 1-based number for (document_type, day). Caller owns the transaction."""
    allocated = _bump(document_type, day)
    if allocated is not None:
        return allocated

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, sequence_date=day, next_number=2))
        return 1
    except IntegrityError:
        # Another transaction created today's row first
        allocated = _bump(document_type, day)
        if allocated is None:
            raise
        return allocated


def _random_suffix() -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))


def next_order_number(now=None) -> str:
    day = date_stamp(now or utcnow())
    number = allocate_sequence_number(DOC_ORDER, day)
    return f"ORD-{day}-{number:0{SEQUENCE_PAD}d}-{_random_suffix()}"


def next_receipt_number(now=None) -> str:
    day = date_stamp(now or utcnow())
    number = allocate_sequence_number(DOC_RECEIPT, day)
    return f"RCP-{day}-{number:0{SEQUENCE_PAD}d}"
