"""Server-side booking price computation.

Nothing here trusts client-supplied amounts: the total is rebuilt from the
batch price, the trek's add-ons, an optional promo code and the trek's tax
and gateway-surcharge policy.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.core.errors import ValidationError, PartialPaymentNotEnabled
from app.models.promo_code import PromoCode
from app.models.trek import Trek
from app.services.refund_policy import quantize_money, as_utc

HUNDRED = Decimal("100")


@dataclass
class PriceQuote:
    base_amount: Decimal
    add_on_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    gateway_fee: Decimal
    total_price: Decimal
    add_ons: list[dict] = field(default_factory=list)


def validate_promo_code(promo: PromoCode | None, trek_id: str, subtotal: Decimal, now: datetime | None = None) -> PromoCode:
    now = now or datetime.now(timezone.utc)
    if promo is None or not promo.is_active:
        raise ValidationError("Invalid promo code")
    if as_utc(promo.valid_from) > now or as_utc(promo.valid_until) < now:
        raise ValidationError("Promo code is not valid at this time")
    if promo.max_uses is not None and int(promo.used_count or 0) >= int(promo.max_uses):
        raise ValidationError("Promo code usage limit reached")
    if subtotal < Decimal(promo.min_order_value or 0):
        raise ValidationError(
            f"Minimum order value for this promo code is {quantize_money(promo.min_order_value)}",
            min_order_value=quantize_money(promo.min_order_value),
        )
    if promo.trek_id and promo.trek_id != trek_id:
        raise ValidationError("Promo code is not applicable to this trek")
    return promo


def promo_discount(promo: PromoCode | None, subtotal: Decimal) -> Decimal:
    if promo is None:
        return Decimal("0.00")
    if promo.discount_type == "percentage":
        discount = subtotal * Decimal(promo.discount_value) / HUNDRED
    elif promo.discount_type == "fixed":
        discount = Decimal(promo.discount_value)
    else:
        raise ValidationError(f"unknown discount type: {promo.discount_type}")
    return quantize_money(min(discount, subtotal))


def quote_booking(trek: Trek, batch_price, participants: int, add_ons=(), promo: PromoCode | None = None) -> PriceQuote:
    """Compute the immutable price breakdown for a new booking.

    Add-on prices are per participant. GST is charged on the discounted
    subtotal only when the trek's prices exclude it; the gateway surcharge is
    passed to the customer only when ``gateway_type == "customer"``.
    """
    if participants < 1:
        raise ValidationError("participants must be >= 1")
    base = quantize_money(Decimal(batch_price) * participants)
    add_on_rows = [{"id": a.id, "name": a.name, "price": str(quantize_money(a.price))} for a in add_ons]
    add_on_amount = quantize_money(sum((Decimal(a.price) for a in add_ons), Decimal("0")) * participants)
    subtotal = base + add_on_amount

    discount = promo_discount(promo, subtotal)
    taxable = subtotal - discount

    tax = Decimal("0.00")
    if (trek.gst_type or "excluded") == "excluded" and Decimal(trek.gst_percent or 0) > 0:
        tax = quantize_money(taxable * Decimal(trek.gst_percent) / HUNDRED)

    fee = Decimal("0.00")
    if (trek.gateway_type or "customer") == "customer" and Decimal(trek.gateway_percent or 0) > 0:
        fee = quantize_money((taxable + tax) * Decimal(trek.gateway_percent) / HUNDRED)

    return PriceQuote(
        base_amount=base,
        add_on_amount=add_on_amount,
        discount_amount=discount,
        tax_amount=tax,
        gateway_fee=fee,
        total_price=quantize_money(taxable + tax + fee),
        add_ons=add_on_rows,
    )


def partial_payment_split(total: Decimal, trek: Trek, start_date: datetime) -> tuple[Decimal, Decimal, datetime]:
    """Return (initial_amount, remaining_amount, due_date) for a partial-payment booking."""
    if not trek.partial_payment_enabled:
        raise PartialPaymentNotEnabled("Partial payment is not enabled for this trek")
    amount = Decimal(trek.partial_payment_amount or 0)
    if trek.partial_payment_amount_type == "percentage":
        if amount <= 0 or amount > HUNDRED:
            raise ValidationError("partial payment percentage must be between 0 and 100")
        initial = quantize_money(total * amount / HUNDRED)
    elif trek.partial_payment_amount_type == "fixed":
        if amount <= 0:
            raise ValidationError("partial payment amount must be positive")
        initial = quantize_money(min(amount, total))
    else:
        raise ValidationError(f"unknown partial payment amount type: {trek.partial_payment_amount_type}")
    due_date = as_utc(start_date) - timedelta(days=int(trek.final_payment_due_days or 0))
    return initial, quantize_money(total - initial), due_date
