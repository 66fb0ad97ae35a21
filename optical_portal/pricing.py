from __future__ import annotations

# =========================================
# pricing.py
# Optical Portal - order pricing engine
# =========================================
# Pure calculation shared by the order API, the order service and the PDF.
# Two parallel paths are priced from the same draft:
#   Regular   - self-pay, frame at list price, regular lens prices
#   Insurance - "Your Price", frame after allowance/discount, insurance lens prices
# Every monetary step is rounded half-up to cents before the next step uses it.
# =========================================

from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional

SALES_TAX_RATE = Decimal("0.0225")
WARRANTY_COPAY_RATE = Decimal("0.15")
IWELLNESS_FEE = Decimal("39.00")

NO_WARRANTY = "None"

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, float):
        # repr() gives the shortest string that round-trips, i.e. what was typed
        return Decimal(repr(value))
    return Decimal(str(value))


def round2(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# --- Inputs ------------------------------------------------------------------
@dataclass(frozen=True)
class FrameInput:
    list_price: Decimal = Decimal("0")
    allowance: Decimal = Decimal("0")
    discount_percent: Decimal = Decimal("0")
    uses_own_frame: bool = False


@dataclass(frozen=True)
class LensSelection:
    value: str
    regular_price: Decimal = Decimal("0")
    insurance_price: Optional[Decimal] = None  # None = not entered yet, counts as 0
    label: Optional[str] = None


@dataclass(frozen=True)
class WarrantySelection:
    type: str = NO_WARRANTY
    price: Decimal = Decimal("0")

    @property
    def selected(self) -> bool:
        return bool(self.type) and self.type != NO_WARRANTY


@dataclass(frozen=True)
class OtherCharge:
    type: str = "none"
    price: Decimal = Decimal("0")


@dataclass(frozen=True)
class OrderDraft:
    frame: FrameInput = field(default_factory=FrameInput)
    lens_selections: Mapping[str, LensSelection] = field(default_factory=dict)
    warranty: WarrantySelection = field(default_factory=WarrantySelection)
    material_copay: Decimal = Decimal("0")
    other_charges_adjustment: Decimal = Decimal("0")
    other_percent_adjustment: Decimal = Decimal("0")
    iwellness_selected: bool = False
    other_charge_1: OtherCharge = field(default_factory=OtherCharge)
    other_charge_2: OtherCharge = field(default_factory=OtherCharge)
    payment_today: Decimal = Decimal("0")
    # flat <category>_price columns of records saved before lens_selections existed
    legacy_lens_prices: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class PricingRates:
    sales_tax_rate: Decimal = SALES_TAX_RATE
    warranty_copay_rate: Decimal = WARRANTY_COPAY_RATE


# --- Outputs -----------------------------------------------------------------
@dataclass(frozen=True)
class PricingPath:
    frame_price: Decimal
    lens_charges: Decimal


@dataclass(frozen=True)
class PathTotals:
    base_price: Decimal
    after_copay: Decimal
    sales_tax: Decimal
    you_pay: Decimal
    final_price: Decimal
    percent_adjustment: Decimal
    total_balance: Decimal
    balance_due: Decimal


@dataclass(frozen=True)
class WarrantyCopay:
    """Replacement-claim copays shown to the customer. Never part of a total."""
    frame_replacement_copay: Decimal
    lens_replacement_copay: Decimal


@dataclass(frozen=True)
class PriceBreakdown:
    final_frame_price: Decimal
    you_saved: Decimal
    total_lens_charges_regular: Decimal
    total_lens_charges_insurance: Decimal
    regular_price: Decimal
    insurance_regular_price: Decimal
    after_copay_regular: Decimal
    after_copay_insurance: Decimal
    sales_tax_regular: Decimal
    sales_tax_insurance: Decimal
    you_pay_regular: Decimal
    you_pay_insurance: Decimal
    final_price_regular: Decimal
    final_price_insurance: Decimal
    additional_charges: Decimal
    percent_adjustment_regular: Decimal
    percent_adjustment_insurance: Decimal
    total_balance_regular: Decimal
    total_balance_insurance: Decimal
    balance_due_regular: Decimal
    balance_due_insurance: Decimal
    warranty_copay: Optional[WarrantyCopay] = None

    def to_dict(self) -> dict:
        out = {}
        for key, val in asdict(self).items():
            if key == "warranty_copay":
                out[key] = None if val is None else {k: float(v) for k, v in val.items()}
            else:
                out[key] = float(val)
        return out


# --- Frame -------------------------------------------------------------------
def resolve_frame_price(frame: FrameInput) -> tuple[Decimal, Decimal]:
    """
    Returns (final_frame_price, you_saved).
    Allowance comes off first, then the discount applies to what remains.
    Allowance larger than the list price yields a negative price (kept as-is).
    """
    if frame.uses_own_frame:
        return round2(0), round2(0)

    list_price = to_decimal(frame.list_price)
    after_allowance = list_price - to_decimal(frame.allowance)
    discount_amount = after_allowance * to_decimal(frame.discount_percent) / HUNDRED
    final_frame_price = round2(after_allowance - discount_amount)
    you_saved = round2(list_price - final_frame_price)
    return final_frame_price, you_saved


def frame_list_price(frame: FrameInput) -> Decimal:
    if frame.uses_own_frame:
        return Decimal("0")
    return to_decimal(frame.list_price)


# --- Lenses ------------------------------------------------------------------
def aggregate_lens_charges(selections: Mapping[str, LensSelection]) -> tuple[Decimal, Decimal]:
    """Returns (regular_total, insurance_total) over the selected categories."""
    regular = Decimal("0")
    insurance = Decimal("0")
    for selection in selections.values():
        regular += to_decimal(selection.regular_price)
        if selection.insurance_price is not None:
            insurance += to_decimal(selection.insurance_price)
    return round2(regular), round2(insurance)


def apply_legacy_lens_fallback(selection_total: Decimal, legacy_prices: Mapping[str, Decimal]) -> Decimal:
    """
    Compatibility shim for orders saved before per-category selections:
    their lens prices live only in flat <category>_price columns.
    Delete once every stored order carries lens_selections_json.
    """
    if not legacy_prices:
        return selection_total
    legacy_total = round2(sum((to_decimal(p) for p in legacy_prices.values()), Decimal("0")))
    return max(selection_total, legacy_total)


# --- Shared charges ----------------------------------------------------------
def additional_charges(draft: OrderDraft) -> Decimal:
    iwellness = IWELLNESS_FEE if draft.iwellness_selected else Decimal("0")
    return round2(
        iwellness
        + to_decimal(draft.other_charge_1.price)
        + to_decimal(draft.other_charge_2.price)
    )


def warranty_copay(draft: OrderDraft, lens_regular: Decimal,
                   rates: PricingRates = PricingRates()) -> Optional[WarrantyCopay]:
    if not draft.warranty.selected:
        return None
    return WarrantyCopay(
        frame_replacement_copay=round2(frame_list_price(draft.frame) * to_decimal(rates.warranty_copay_rate)),
        lens_replacement_copay=round2(to_decimal(lens_regular) * to_decimal(rates.warranty_copay_rate)),
    )


# --- Pipeline ----------------------------------------------------------------
def price_path(path: PricingPath, draft: OrderDraft, extra_charges: Decimal,
               rates: PricingRates = PricingRates()) -> PathTotals:
    base_price = round2(to_decimal(path.frame_price) + to_decimal(path.lens_charges))
    after_copay = round2(base_price + to_decimal(draft.material_copay))
    sales_tax = round2(after_copay * to_decimal(rates.sales_tax_rate))
    you_pay = round2(after_copay + sales_tax + to_decimal(draft.other_charges_adjustment))
    final_price = round2(you_pay + to_decimal(draft.warranty.price))

    # anchored on final price, not final price minus today's payment
    percent_adjustment = round2(final_price * to_decimal(draft.other_percent_adjustment) / HUNDRED)
    total_balance = round2(final_price - percent_adjustment + extra_charges)
    balance_due = round2(total_balance - to_decimal(draft.payment_today))

    return PathTotals(
        base_price=base_price,
        after_copay=after_copay,
        sales_tax=sales_tax,
        you_pay=you_pay,
        final_price=final_price,
        percent_adjustment=percent_adjustment,
        total_balance=total_balance,
        balance_due=balance_due,
    )


def compute_pricing(draft: OrderDraft, rates: Optional[PricingRates] = None) -> PriceBreakdown:
    rates = rates or PricingRates()

    final_frame_price, you_saved = resolve_frame_price(draft.frame)

    lens_regular, lens_insurance = aggregate_lens_charges(draft.lens_selections)
    lens_regular = apply_legacy_lens_fallback(lens_regular, draft.legacy_lens_prices)

    extra = additional_charges(draft)

    regular = price_path(PricingPath(frame_list_price(draft.frame), lens_regular), draft, extra, rates)
    insurance = price_path(PricingPath(final_frame_price, lens_insurance), draft, extra, rates)

    return PriceBreakdown(
        final_frame_price=final_frame_price,
        you_saved=you_saved,
        total_lens_charges_regular=lens_regular,
        total_lens_charges_insurance=lens_insurance,
        regular_price=regular.base_price,
        insurance_regular_price=insurance.base_price,
        after_copay_regular=regular.after_copay,
        after_copay_insurance=insurance.after_copay,
        sales_tax_regular=regular.sales_tax,
        sales_tax_insurance=insurance.sales_tax,
        you_pay_regular=regular.you_pay,
        you_pay_insurance=insurance.you_pay,
        final_price_regular=regular.final_price,
        final_price_insurance=insurance.final_price,
        additional_charges=extra,
        percent_adjustment_regular=regular.percent_adjustment,
        percent_adjustment_insurance=insurance.percent_adjustment,
        total_balance_regular=regular.total_balance,
        total_balance_insurance=insurance.total_balance,
        balance_due_regular=regular.balance_due,
        balance_due_insurance=insurance.balance_due,
        warranty_copay=warranty_copay(draft, lens_regular, rates),
    )
