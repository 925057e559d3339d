"""Configuration for the SQL OData Gateway."""

from .settings import GatewayConfig

__all__ = ["GatewayConfig"]
