# Overview: Branch-scoped identifiers; transaction ids and sequential invoice numbers.

from __future__ import annotations

import logging
import secrets
from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..constants import INVOICE_SEQUENCE
from ..models import Sale, SequenceCounter
from branch_pos.time_utils import utcnow

logger = logging.getLogger(__name__)


TRANSACTION_ID_PREFIX = "TXN"
INVOICE_MARKER = "INV"
INVOICE_PAD = 6


def generate_transaction_id(now: datetime | None = None) -> str:
    """
    Build a transaction id: TXN-YYYYMMDD-NNNNNN (UTC date, 6 random digits).

    A correlation token, not a key: two sales on the same day collide with
    probability ~1/999999 per pair.
    """
    now = now or utcnow()
    suffix = secrets.randbelow(999999) + 1
    return f"{TRANSACTION_ID_PREFIX}-{now:%Y%m%d}-{suffix:06d}"


def next_transaction_id(session: Session, *, max_attempts: int = 5, now: datetime | None = None) -> str:
    """
    Generate a transaction id not yet used in this branch.

    Regenerates on collision up to max_attempts times; if every candidate is
    taken the last one is used anyway (ids are correlation tokens).
    """
    candidate = generate_transaction_id(now)
    for _ in range(max(1, max_attempts)):
        exists = session.query(Sale.id).filter(Sale.transaction_id == candidate).first()
        if exists is None:
            return candidate
        candidate = generate_transaction_id(now)
    logger.warning("Transaction id collisions exhausted %s attempts; using %s", max_attempts, candidate)
    return candidate


def format_invoice_number(branch_code: str, value: int) -> str:
    return f"{branch_code}-{INVOICE_MARKER}-{value:0{INVOICE_PAD}d}"


def parse_invoice_sequence(invoice_number: str | None) -> int | None:
    """Return the numeric tail of CODE-INV-NNNNNN, or None if it is not one."""
    if not invoice_number:
        return None
    head, sep, tail = invoice_number.rpartition(f"-{INVOICE_MARKER}-")
    if not sep or not head or not tail.isdigit():
        return None
    return int(tail)


def _highest_issued_invoice(session: Session) -> int:
    """
    Highest numeric tail among existing invoice numbers.

    Used only to seed a missing counter row (databases that issued invoices
    before the counter existed). Longer strings sort first so 1000000 beats
    999999.
    """
    row = (
        session.query(Sale.invoice_number)
        .filter(Sale.invoice_number.isnot(None))
        .order_by(func.char_length(Sale.invoice_number).desc(), Sale.invoice_number.desc())
        .first()
    )
    if row is None:
        return 0
    return parse_invoice_sequence(row[0]) or 0


def _bump(session: Session, name: str) -> int | None:
    stmt = (
        update(SequenceCounter)
        .where(SequenceCounter.name == name)
        .values(last_value=SequenceCounter.last_value + 1, updated_at=utcnow())
    )
    result = session.execute(stmt)
    if not result.rowcount:
        return None
    return (
        session.query(SequenceCounter.last_value)
        .filter(SequenceCounter.name == name)
        .scalar()
    )


def next_sequence_value(session: Session, name: str, *, seed=None) -> int:
    """
    Atomically allocate the next value of a branch sequence.

    Must run inside the caller's write transaction. The UPDATE takes the
    counter row lock and holds it until commit, so concurrent allocators in
    the same branch queue behind each other (SQLite: the database write lock).
    Values of rolled-back transactions are simply reissued or skipped; gaps
    are allowed, duplicates are not.

    seed: optional callable returning the value the sequence starts after
    when the counter row does not exist yet.
    """
    if not name:
        raise ValueError("sequence name is required")

    value = _bump(session, name)
    if value is not None:
        return value

    start = seed(session) if seed is not None else 0
    try:
        with session.begin_nested():
            session.add(SequenceCounter(name=name, last_value=start + 1))
        return start + 1
    except IntegrityError:
        # Another transaction created the row first; its lock now orders us
        value = _bump(session, name)
        if value is None:
            raise
        return value


def next_invoice_number(session: Session, branch_code: str) -> str:
    """Allocate the next {CODE}-INV-NNNNNN invoice number for this branch."""
    value = next_sequence_value(session, INVOICE_SEQUENCE, seed=_highest_issued_invoice)
    return format_invoice_number(branch_code, value)
