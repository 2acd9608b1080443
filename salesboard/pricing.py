"""
Pricing lab: breakeven and recommended selling prices and the ROAS needed to
hit them, for one product sold through the shop.
"""
from dataclasses import dataclass, fields

from salesboard.constants import PCT_MULTIPLIER


@dataclass
class PricingInputs:
    product_cost: float = 15.0
    affiliate_commission_pct: float = 10.0
    live_host_fee: float = 2.0
    target_profit_pct: float = 20.0
    shipping_fee_pct: float = 5.0
    marketplace_fee_pct: float = 6.97
    transaction_fee_pct: float = 3.78
    completed_order_fee: float = 0.54
    simulated_price: float = None

    @classmethod
    def from_payload(cls, payload: dict):
        """
        Builds inputs from a request body, keeping the defaults for absent or blank values.

        Keys may be camelCase (``productCost``) or snake_case (``product_cost``).

        Raises:
            ValueError: If a key is not a pricing input or a value is not a number.
        """
        payload = payload or {}
        names = {}
        for f in fields(cls):
            names[f.name] = f.name
            names[_camel_case(f.name)] = f.name

        unknown = sorted(key for key in payload if key not in names)
        if unknown:
            raise ValueError(f"Unknown pricing inputs: {', '.join(unknown)}")

        values = {}
        for key, value in payload.items():
            if value is None or value == "":
                continue
            if isinstance(value, bool):
                raise ValueError(f"{key} must be a number, got {value!r}")
            try:
                values[names[key]] = float(value)
            except (TypeError, ValueError):
                raise ValueError(f"{key} must be a number, got {value!r}")
        return cls(**values)


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass
class PricingResult:
    breakeven_price: float
    recommended_price: float
    active_price: float
    platform_fees: float
    affiliate_cost: float
    total_cost: float
    profit_amount: float
    target_profit_amount: float
    breakeven_roas: float
    target_roas: float
    is_invalid: bool


def _price_for_margin(fixed_costs, pct_of_price):
    """Price at which ``pct_of_price`` percent of it plus ``fixed_costs`` is covered; None when unreachable."""
    divisor = 1 - pct_of_price / PCT_MULTIPLIER
    if divisor <= 0:
        return None
    return fixed_costs / divisor


def calculate_pricing(inputs: PricingInputs) -> PricingResult:
    """
    Runs the pricing calculation.

    Percentage fees (shipping, marketplace, transaction and affiliate) scale
    with the selling price; product cost, live host fee and the completed-order
    fee are fixed per unit.

    Args:
        inputs (PricingInputs): Costs, fees and the target profit margin.

    Returns:
        PricingResult: Prices are None when the fees leave no margin; ROAS
        values are 0 when the price leaves nothing for ads.
    """
    fee_pct = (inputs.shipping_fee_pct + inputs.marketplace_fee_pct +
               inputs.transaction_fee_pct + inputs.affiliate_commission_pct)
    fixed_costs = inputs.product_cost + inputs.live_host_fee + inputs.completed_order_fee

    breakeven_price = _price_for_margin(fixed_costs, fee_pct)
    recommended_price = _price_for_margin(fixed_costs, fee_pct + inputs.target_profit_pct)

    active_price = inputs.simulated_price or recommended_price
    if active_price is None:
        return PricingResult(breakeven_price, recommended_price, None, None, None, None, None, None, 0.0, 0.0, True)

    platform_fee_pct = inputs.shipping_fee_pct + inputs.marketplace_fee_pct + inputs.transaction_fee_pct
    platform_fees = active_price * platform_fee_pct / PCT_MULTIPLIER + inputs.completed_order_fee
    affiliate_cost = active_price * inputs.affiliate_commission_pct / PCT_MULTIPLIER
    total_cost = inputs.product_cost + platform_fees + affiliate_cost + inputs.live_host_fee

    # Whatever is left after costs is the most that can go on ads
    breakeven_margin = active_price - total_cost
    breakeven_roas = active_price / breakeven_margin if breakeven_margin > 0 else 0.0

    target_profit_amount = active_price * inputs.target_profit_pct / PCT_MULTIPLIER
    target_margin = active_price - (total_cost + target_profit_amount)
    target_roas = active_price / target_margin if target_margin > 0 else 0.0

    return PricingResult(
        breakeven_price=breakeven_price,
        recommended_price=recommended_price,
        active_price=active_price,
        platform_fees=platform_fees,
        affiliate_cost=affiliate_cost,
        total_cost=total_cost,
        profit_amount=active_price - total_cost,
        target_profit_amount=target_profit_amount,
        breakeven_roas=breakeven_roas,
        target_roas=target_roas,
        is_invalid=active_price <= total_cost + target_profit_amount,
    )
