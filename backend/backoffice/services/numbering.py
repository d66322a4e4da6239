"""
Sequential document numbers: <PREFIX><year>-<5-digit sequence>, restarting each year.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session

PURCHASE_PREFIX = "PO"
EXPENSE_PREFIX = "EXP"
RETURN_PREFIX = "RET"
LOSS_PREFIX = "LOSS"


def next_document_number(db: Session, column, prefix: str, year: int) -> str:
    """Next number after the highest one issued for ``year``.

    Must run inside the unit of work that inserts the document; a concurrent
    insert of the same number trips the unique constraint and the unit of work
    is retried.
    """
    stem = f"{prefix}{year}-"
    last = db.query(func.max(column)).filter(column.like(f"{stem}%")).scalar()
    sequence = int(last[len(stem):]) + 1 if last else 1
    return f"{stem}{sequence:05d}"
