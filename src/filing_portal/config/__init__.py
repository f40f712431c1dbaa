"""Configuration for the filing portal."""

from .settings import (
    PortalSettings,
    PricingSettings,
    WizardSettings,
    ResilienceSettings,
    DatabaseSettings,
    get_settings,
)

__all__ = [
    "PortalSettings",
    "PricingSettings",
    "WizardSettings",
    "ResilienceSettings",
    "DatabaseSettings",
    "get_settings",
]
