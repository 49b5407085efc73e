"""JSON API over recommendations, the strategy store, sources and price history."""

from advisor.api.app import create_app

__all__ = ["create_app"]
