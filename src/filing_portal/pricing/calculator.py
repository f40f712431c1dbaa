"""Pricing calculator.

Derives the price of a filing from its composition. Two modes:

- schema pricing: every person pays the schema base fee plus each rule
  whose condition matches that person's own answers
- flat pricing (schema has no pricing block): base fee per kind plus spouse
  and per-dependent fees from settings

Money is handled as Decimal and rounded to cents.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Mapping, Optional, Sequence, Union

from filing_portal.config.settings import PricingSettings, get_settings
from filing_portal.domain.aggregates import BusinessRecord, Filing, PersonRecord, RecordRole
from filing_portal.domain.value_objects import AmountDue, PricingBreakdown, PricingItem
from filing_portal.schema.models import PricingSchema, Schema
from filing_portal.validation.visibility import evaluate_condition

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
NO_PAYMENT_REQUIRED = "No additional payment required"

_ROLE_ORDER = {RecordRole.PRIMARY: 0, RecordRole.SPOUSE: 1, RecordRole.DEPENDENT: 2}


def to_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """Convert to a Decimal rounded to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_price(amount: Union[Decimal, float, int], currency: str = "CAD") -> str:
    """Format an amount for display, e.g. ``$1,234.50``."""
    money = to_money(amount)
    if currency in ("CAD", "USD"):
        return f"${money:,.2f}"
    return f"{money:,.2f} {currency}"


def ordered_persons(persons: Sequence[PersonRecord]) -> List[PersonRecord]:
    return sorted(
        persons,
        key=lambda p: (_ROLE_ORDER.get(p.role, 3), p.ordinal if p.ordinal is not None else 0, p.created_at),
    )


class PricingCalculator:
    """
    Computes pricing breakdowns and amounts due.

    Usage:
        calculator = PricingCalculator()
        breakdown = calculator.compute_total(filing, persons, schema)
        due = calculator.amount_due(filing, breakdown)
    """

    def __init__(self, settings: Optional[PricingSettings] = None):
        self.settings = settings or get_settings().pricing

    def compute_total(
        self,
        filing: Filing,
        persons: Sequence[PersonRecord] = (),
        schema: Optional[Schema] = None,
        business: Optional[BusinessRecord] = None,
    ) -> PricingBreakdown:
        """
        Price a filing.

        Args:
            filing: The filing being priced
            persons: Person records (INDIVIDUAL filings)
            schema: Schema of the filing; its pricing block wins over settings
            business: Business record (CORPORATE/TRUST filings)

        Returns:
            PricingBreakdown with items, subtotal, tax and total
        """
        pricing = schema.pricing if schema is not None else None
        if pricing is not None:
            base_fee, items = self._schema_items(filing, persons, business, pricing)
            currency = pricing.currency
            rate = pricing.tax_rate if pricing.tax_rate is not None else self.settings.tax_rate_for(filing.jurisdiction)
        else:
            base_fee, items = self._flat_items(filing, persons)
            currency = self.settings.currency
            rate = self.settings.tax_rate_for(filing.jurisdiction)

        subtotal = to_money(sum((item.amount for item in items), Decimal("0")))
        tax = to_money(subtotal * rate)
        return PricingBreakdown(
            base_fee=to_money(base_fee),
            items=items,
            subtotal=subtotal,
            tax_rate=rate,
            tax=tax,
            total=to_money(subtotal + tax),
            currency=currency,
        )

    def _schema_items(
        self,
        filing: Filing,
        persons: Sequence[PersonRecord],
        business: Optional[BusinessRecord],
        pricing: PricingSchema,
    ):
        items: List[PricingItem] = []

        if filing.kind.is_business:
            label = (business.display_name if business else "") or filing.kind.value.title()
            answers = business.answers if business else {}
            items.extend(self._person_items(label, answers, pricing))
            return pricing.base_fee, items

        ordered = ordered_persons(persons)
        if not ordered:
            items.append(PricingItem(label="Primary Filer - Base Fee", amount=to_money(pricing.base_fee)))
            return pricing.base_fee, items

        for person in ordered:
            items.extend(self._person_items(person.display_name, person.answers, pricing))
        return pricing.base_fee, items

    @staticmethod
    def _person_items(label: str, answers: Mapping[str, Any], pricing: PricingSchema) -> List[PricingItem]:
        items = [PricingItem(label=f"{label} - Base Fee", amount=to_money(pricing.base_fee))]
        for rule in pricing.rules:
            if evaluate_condition(rule.condition, answers, unknown=False):
                items.append(PricingItem(label=f"{label} - {rule.description}", amount=to_money(rule.amount)))
        return items

    def _flat_items(self, filing: Filing, persons: Sequence[PersonRecord]):
        base_fee = self.settings.base_fee_for(filing.kind.value)
        items = [PricingItem(label="Base Fee", amount=to_money(base_fee))]
        if filing.kind.is_business:
            return base_fee, items

        if any(p.role == RecordRole.SPOUSE for p in persons):
            items.append(PricingItem(label="Spouse Return", amount=to_money(self.settings.spouse_fee)))

        dependents = sum(1 for p in persons if p.role == RecordRole.DEPENDENT)
        if dependents:
            fee = to_money(self.settings.dependent_fee)
            items.append(PricingItem(
                label=f"Dependents ({dependents} x {format_price(fee, self.settings.currency)})",
                amount=to_money(fee * dependents),
            ))
        return base_fee, items

    def amount_due(
        self,
        filing: Filing,
        total: Union[PricingBreakdown, Decimal],
    ) -> AmountDue:
        """
        What is left to pay.

        For an amendment (reference number present and something already
        paid) the earlier payment is deducted, never going below zero.
        Exactly zero is a normal outcome.
        """
        if isinstance(total, PricingBreakdown):
            currency = total.currency
            total = total.total
        else:
            currency = self.settings.currency
        total = to_money(total)

        if not filing.is_amendment:
            return AmountDue(total=total, amount_due=total, currency=currency)

        paid = to_money(filing.paid_amount)
        due = max(Decimal("0.00"), total - paid)
        if due == 0:
            message = NO_PAYMENT_REQUIRED
        else:
            message = f"Additional payment of {format_price(due, currency)} required"
        logger.debug(f"Amendment pricing for filing {filing.id}: total={total} paid={paid} due={due}")
        return AmountDue(
            total=total,
            previously_paid=paid,
            amount_due=to_money(due),
            is_amendment=True,
            currency=currency,
            message=message,
        )
