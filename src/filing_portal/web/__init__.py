"""HTTP surface of the filing portal."""

from .app import create_app
from .filing_api import WizardSessions, router

__all__ = ["create_app", "WizardSessions", "router"]
