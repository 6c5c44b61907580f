# Overview: Per-company document number allocation (PO, GRN, PINV, SO, RO).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


DOC_PURCHASE_ORDER = "purchase_order"
DOC_GOODS_RECEIPT = "goods_receipt"
DOC_PURCHASE_INVOICE = "purchase_invoice"
DOC_SUPPLIER_PAYMENT = "supplier_payment"
DOC_SALES_ORDER = "sales_order"
DOC_RETURN_ORDER = "return_order"

PREFIXES = {
    DOC_PURCHASE_ORDER: "PO",
    DOC_GOODS_RECEIPT: "GRN",
    DOC_PURCHASE_INVOICE: "PINV",
    DOC_SUPPLIER_PAYMENT: "PAY",
    DOC_SALES_ORDER: "SO",
    DOC_RETURN_ORDER: "RO",
}


def _increment(company_id: int, document_type: str, year: int):
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.company_id == company_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt)


def _current(company_id: int, document_type: str, year: int) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(company_id=company_id, document_type=document_type, year=year)
        .scalar()
    )


def next_document_number(
    company_id: int,
    document_type: str,
    prefix: str | None = None,
    *,
    pad: int = 4,
    year: int | None = None,
) -> str:
    """
    Atomically allocate the next document number for a company/type.

    Format: {prefix}-{year}-{n:0pad}, e.g. PO-2026-0007.

    Must be called inside the caller's unit of work (run_atomic): the
    UPDATE takes the row lock, and a lost first-insert race is resolved
    inside a SAVEPOINT so the caller's transaction survives.
    """
    prefix = prefix or PREFIXES[document_type]
    year = year or utcnow().year

    result = _increment(company_id, document_type, year)
    if result.rowcount:
        next_num = _current(company_id, document_type, year) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(
                    company_id=company_id,
                    document_type=document_type,
                    year=year,
                    next_number=2,
                ))
            next_num = 1
        except IntegrityError:
            # Another transaction created the row first
            result = _increment(company_id, document_type, year)
            if not result.rowcount:
                raise
            next_num = _current(company_id, document_type, year) - 1

    return f"{prefix}-{year}-{next_num:0{pad}d}"
