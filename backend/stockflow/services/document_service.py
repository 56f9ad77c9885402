# Overview: Per-tenant document numbering for movements and returns.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


def next_document_number(
    *,
    tenant_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a tenant/type/year.

    Runs inside the caller's transaction. The counter row is bumped with a
    single UPDATE so concurrent allocations serialize on that row; the first
    allocation of a year inserts the row under a savepoint.
    """
    year = utcnow().year
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(tenant_id=tenant_id, document_type=document_type, year=year, next_number=2)
                )
            return _format(prefix, year, 1, pad)
        except IntegrityError:
            # Another writer created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(tenant_id=tenant_id, document_type=document_type, year=year)
        .scalar()
    )
    return _format(prefix, year, current - 1, pad)


def _format(prefix: str, year: int, number: int, pad: int) -> str:
    return f"{prefix}-{year}-{number:0{pad}d}"
