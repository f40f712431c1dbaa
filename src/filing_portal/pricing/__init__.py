"""Pricing of filings."""

from .calculator import NO_PAYMENT_REQUIRED, PricingCalculator, format_price, to_money

__all__ = ["NO_PAYMENT_REQUIRED", "PricingCalculator", "format_price", "to_money"]
