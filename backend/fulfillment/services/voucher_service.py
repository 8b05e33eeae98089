# Overview: Service-layer operations for vouchers; applicability checks, discount math, and usage recording.

"""
Voucher Discount Evaluator

WHY: Checkout and staff-created orders both need the same answer to
"does this code apply, and how much does it take off?".

RULES:
- Applicable only when status is active, now is within [start_date, end_date],
  usage limits are not exhausted, and subtotal >= minimum_order_amount.
- percentage: discount = subtotal * value / 100, capped at max_discount_amount
- fixed: discount = value, clamped to the subtotal (never a negative base)
- VAT is re-derived afterwards with VatCalculator.rederive_vat_after_discount()
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import or_, update

from ..errors import NotFoundError, VoucherNotApplicable
from ..extensions import db
from ..models import Voucher, VoucherUsage
from ..models.vouchers import VOUCHER_FIXED, VOUCHER_PERCENTAGE
from ..money import ZERO, round2, to_money
from ..time_utils import utcnow
from .vat_service import VatCalculator


VOUCHER_STATUS_ACTIVE = "active"

REASON_NOT_FOUND = "not_found"
REASON_INACTIVE = "inactive"
REASON_NOT_STARTED = "not_started"
REASON_EXPIRED = "expired"
REASON_USAGE_LIMIT = "usage_limit_reached"
REASON_CUSTOMER_LIMIT = "customer_limit_reached"
REASON_MINIMUM_NOT_MET = "minimum_not_met"
REASON_UNKNOWN_TYPE = "unknown_type"


@dataclass(frozen=True)
class DiscountedTotals:
    subtotal_excl_vat: Decimal
    discount_amount: Decimal
    total_vat: Decimal
    total_amount: Decimal


def get_voucher_by_code(code: str) -> Voucher:
    voucher = db.session.query(Voucher).filter_by(code=code).first()
    if voucher is None:
        raise NotFoundError("voucher", code)
    return voucher


def evaluate_voucher(voucher: Voucher, subtotal_excl_vat, *, now=None, user_id: int | None = None) -> Decimal:
    """
    Decide applicability and return the discount amount (2 decimals).

    Raises:
        VoucherNotApplicable: with a machine-readable reason
    """
    subtotal = to_money(subtotal_excl_vat, "subtotal_excl_vat")
    now = now or utcnow()
    code = voucher.code

    if voucher.status != VOUCHER_STATUS_ACTIVE:
        raise VoucherNotApplicable(code, REASON_INACTIVE, "Voucher is not active")
    if now < voucher.start_date:
        raise VoucherNotApplicable(code, REASON_NOT_STARTED, "Voucher is not valid yet")
    if now > voucher.end_date:
        raise VoucherNotApplicable(code, REASON_EXPIRED, "Voucher has expired")
    if voucher.usage_limit is not None and voucher.usage_count >= voucher.usage_limit:
        raise VoucherNotApplicable(code, REASON_USAGE_LIMIT, "Voucher usage limit reached")

    if user_id is not None and voucher.usage_limit_per_customer is not None:
        used = (
            db.session.query(db.func.count(VoucherUsage.id))
            .filter(VoucherUsage.voucher_id == voucher.id, VoucherUsage.user_id == user_id)
            .scalar()
        )
        if used >= voucher.usage_limit_per_customer:
            raise VoucherNotApplicable(
                code, REASON_CUSTOMER_LIMIT, "You have already used this voucher the maximum number of times"
            )

    minimum = Decimal(voucher.minimum_order_amount or 0)
    if subtotal < minimum:
        raise VoucherNotApplicable(
            code, REASON_MINIMUM_NOT_MET, f"Minimum order amount is {round2(minimum):.2f}"
        )

    value = Decimal(voucher.discount_value)
    if voucher.discount_type == VOUCHER_PERCENTAGE:
        discount = round2(subtotal * value / Decimal("100"))
        if voucher.max_discount_amount is not None:
            discount = min(discount, round2(voucher.max_discount_amount))
    elif voucher.discount_type == VOUCHER_FIXED:
        discount = min(round2(value), subtotal)
    else:
        raise VoucherNotApplicable(code, REASON_UNKNOWN_TYPE, f"Unknown discount type: {voucher.discount_type}")

    return max(discount, ZERO)


def apply_voucher_to_totals(
    voucher: Voucher | None,
    subtotal_excl_vat,
    total_vat,
    vat_calculator: VatCalculator,
    *,
    now=None,
    user_id: int | None = None,
) -> DiscountedTotals:
    """
    Pre-discount basket totals -> post-discount totals.

    total_vat on the result is the VAT after the discount.
    """
    subtotal = to_money(subtotal_excl_vat, "subtotal_excl_vat")
    vat = to_money(total_vat, "total_vat")

    if voucher is None:
        return DiscountedTotals(subtotal, ZERO, vat, subtotal + vat)

    discount = evaluate_voucher(voucher, subtotal, now=now, user_id=user_id)
    new_vat = vat_calculator.rederive_vat_after_discount(subtotal, vat, discount)
    return DiscountedTotals(
        subtotal_excl_vat=subtotal,
        discount_amount=discount,
        total_vat=new_vat,
        total_amount=subtotal - discount + new_vat,
    )


def _record_voucher_usage_inner(voucher_code: str, order_id: int, user_id: int | None = None) -> VoucherUsage:
    """
    Consume one use of a voucher. Caller owns the transaction.

    usage_count is bumped with a conditional UPDATE; when the limit is
    already reached no row matches and VoucherNotApplicable is raised so the
    caller's transaction rolls back.
    """
    voucher = get_voucher_by_code(voucher_code)

    result = db.session.execute(
        update(Voucher)
        .where(
            Voucher.id == voucher.id,
            or_(Voucher.usage_limit.is_(None), Voucher.usage_count < Voucher.usage_limit),
        )
        .values(usage_count=Voucher.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(voucher, ["usage_count"])
    if not result.rowcount:
        raise VoucherNotApplicable(voucher_code, REASON_USAGE_LIMIT, "Voucher usage limit reached")

    usage = VoucherUsage(voucher_id=voucher.id, user_id=user_id, order_id=order_id)
    db.session.add(usage)
    db.session.flush()
    return usage
