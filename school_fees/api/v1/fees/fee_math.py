"""Amount arithmetic and status derivation shared by generation, ledger, late fees and adjustments."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.enums import StudentFeeStatus
from school_fees.core.exceptions import NotFoundError
from school_fees.core.models import StudentFee

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def money(val) -> Decimal:
    return to_decimal(val).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount, percent) -> Decimal:
    return money(to_decimal(amount) * to_decimal(percent) / Decimal("100"))


def recompute_totals(fee: StudentFee) -> None:
    """Re-derive final_amount and balance from their components."""
    fee.final_amount = money(
        to_decimal(fee.base_amount) - to_decimal(fee.discount_amount) + to_decimal(fee.late_fee_amount)
    )
    if fee.status == StudentFeeStatus.waived.value:
        fee.balance = ZERO
    else:
        fee.balance = money(to_decimal(fee.final_amount) - to_decimal(fee.amount_paid))


def derive_status(fee: StudentFee) -> str:
    """
    Status from current amounts. Waived is terminal; a balance the sweep has marked overdue
    stays overdue even when partly paid.
    """
    if fee.status == StudentFeeStatus.waived.value:
        return StudentFeeStatus.waived.value
    if to_decimal(fee.balance) <= ZERO:
        return StudentFeeStatus.paid.value
    if fee.overdue_at is not None:
        return StudentFeeStatus.overdue.value
    if to_decimal(fee.amount_paid) > ZERO:
        return StudentFeeStatus.partial.value
    return StudentFeeStatus.pending.value


def snapshot(fee: StudentFee, fields: Iterable[str]) -> Dict[str, object]:
    """JSON-safe copy of the given fee fields for the audit trail."""
    out: Dict[str, object] = {}
    for name in fields:
        value = getattr(fee, name)
        if isinstance(value, Decimal):
            value = str(money(value))
        out[name] = value
    return out


async def load_student_fee(
    db: AsyncSession,
    school_id: UUID,
    fee_id: UUID,
    for_update: bool = False,
) -> StudentFee:
    stmt = select(StudentFee).where(StudentFee.id == fee_id, StudentFee.school_id == school_id)
    if for_update:
        # Row lock and fresh values even if the fee is already in the identity map
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    fee: Optional[StudentFee] = (await db.execute(stmt)).scalar_one_or_none()
    if not fee:
        raise NotFoundError("Student fee not found")
    return fee
