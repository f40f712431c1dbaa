"""
Filing portal core.

Guides a user through a multi-party tax filing (a household of related
persons, or a single corporation or trust) section by section, validates
the answers against a declarative schema and submits the filing for review.
"""

__version__ = "1.0.0"
