"""
Quote graph — pricing as a dependency topology.

    InputsNode
        └─ PricedLinesNode ─ SubtotalNode ─┬─ ShippingNode ─┐
                                           ├─ DiscountNode ─┼─ QuoteNode
                                           └─ TaxNode ──────┘

Nodes are pure; all reads happen before the graph runs.

Note: no `from __future__ import annotations` here. nodnod reads the
`__compose__` annotations at runtime to wire dependencies.
"""

from decimal import Decimal
from typing import Any, cast

from nodnod import EventLoopAgent, Node, Scope, Value, scalar_node as node

from settlement._types import ZERO, money
from settlement.pricing._coupon import AppliedCoupon, resolve_coupon
from settlement.pricing._flash import apply_flash_sale
from settlement.pricing._shipping import shipping_cost
from settlement.pricing._slabs import resolve_base_price
from settlement.pricing._types import PricedLine, PricingInputs, Quote


# ═══════════════════════════════════════════════════════════════════════════════
# Nodes
# ═══════════════════════════════════════════════════════════════════════════════


@node
class InputsNode:
    """Entry point: wraps the loaded snapshot."""

    def __init__(self, data: PricingInputs) -> None:
        self.data = data

    @classmethod
    def __compose__(cls, inputs: PricingInputs) -> "InputsNode":
        return cls(inputs)


@node
class PricedLinesNode:
    """Slab → flash sale, per line."""

    def __init__(self, lines: tuple[PricedLine, ...]) -> None:
        self.lines = lines

    @classmethod
    async def __compose__(cls, inputs: InputsNode) -> "PricedLinesNode":
        snapshot = inputs.data
        priced: list[PricedLine] = []
        for line in snapshot.lines:
            variant = line.variant
            base = resolve_base_price(
                quantity=line.quantity,
                variant_slabs=variant.variant_slabs,
                product_slabs=variant.product_slabs,
                price=variant.price,
                sale_price=variant.sale_price,
            )
            unit, flash = apply_flash_sale(
                base, snapshot.flash_sales.get(variant.product_id), snapshot.at
            )
            priced.append(
                PricedLine(
                    line=line,
                    unit_price=unit,
                    subtotal=money(unit * line.quantity),
                    flash_sale=flash,
                )
            )
        return cls(tuple(priced))


@node
class SubtotalNode:
    def __init__(self, amount: Decimal) -> None:
        self.amount = amount

    @classmethod
    async def __compose__(cls, lines: PricedLinesNode) -> "SubtotalNode":
        return cls(money(sum((p.subtotal for p in lines.lines), ZERO)))


@node
class ShippingNode:
    def __init__(self, amount: Decimal) -> None:
        self.amount = amount

    @classmethod
    async def __compose__(cls, subtotal: SubtotalNode, inputs: InputsNode) -> "ShippingNode":
        return cls(shipping_cost(subtotal.amount, inputs.data.policy.shipping))


@node
class DiscountNode:
    def __init__(self, coupon: AppliedCoupon | None) -> None:
        self.coupon = coupon

    @property
    def amount(self) -> Decimal:
        return self.coupon.amount if self.coupon is not None else ZERO

    @classmethod
    async def __compose__(cls, subtotal: SubtotalNode, inputs: InputsNode) -> "DiscountNode":
        snapshot = inputs.data
        return cls(
            resolve_coupon(
                subtotal.amount,
                user_coupon=snapshot.user_coupon,
                carried=snapshot.carried,
                carried_terms=snapshot.carried_terms,
            )
        )


@node
class TaxNode:
    def __init__(self, amount: Decimal) -> None:
        self.amount = amount

    @classmethod
    async def __compose__(cls, subtotal: SubtotalNode, inputs: InputsNode) -> "TaxNode":
        snapshot = inputs.data
        address = snapshot.address.for_tax() if snapshot.address is not None else None
        return cls(money(snapshot.policy.tax(subtotal.amount, address)))


@node
class QuoteNode:
    """subtotal − discount + shipping + tax (+ COD surcharge for cash orders)."""

    def __init__(self, data: Quote) -> None:
        self.data = data

    @classmethod
    async def __compose__(
        cls,
        inputs: InputsNode,
        lines: PricedLinesNode,
        subtotal: SubtotalNode,
        shipping: ShippingNode,
        discount: DiscountNode,
        tax: TaxNode,
    ) -> "QuoteNode":
        cod = money(inputs.data.policy.payments.cod_charge) if inputs.data.cash else ZERO
        total = subtotal.amount - discount.amount + shipping.amount + tax.amount + cod
        return cls(
            Quote(
                lines=lines.lines,
                subtotal=subtotal.amount,
                discount=discount.amount,
                coupon=discount.coupon,
                shipping=shipping.amount,
                tax=tax.amount,
                cod_charge=cod,
                total=money(total),
            )
        )


# ═══════════════════════════════════════════════════════════════════════════════
# QuotePipeline: compile once, run per settlement
# ═══════════════════════════════════════════════════════════════════════════════


class QuotePipeline:
    """
    Pre-compiled quote graph.

    Example:
        pipeline = QuotePipeline()
        quote = await pipeline(inputs)
    """

    __slots__ = ("_agent",)

    def __init__(self) -> None:
        targets: set[type[Node[Any, Any]]] = {cast(type[Node[Any, Any]], QuoteNode)}
        self._agent = EventLoopAgent.build(targets)

    async def __call__(self, inputs: PricingInputs) -> Quote:
        scope = Scope(detail="quote")
        async with scope:
            scope.push(Value(PricingInputs, inputs))
            await self._agent.run(scope, {})
            priced = scope.get(QuoteNode)
            if priced is None:
                raise RuntimeError("quote graph finished without a quote")
            return cast(QuoteNode, priced.value).data


__all__ = (
    "InputsNode",
    "PricedLinesNode",
    "SubtotalNode",
    "ShippingNode",
    "DiscountNode",
    "TaxNode",
    "QuoteNode",
    "QuotePipeline",
)
