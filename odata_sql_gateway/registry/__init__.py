"""Endpoint registry."""

from .endpoint_registry import (
    EndpointRegistry,
    FileEndpointLoader,
    build_descriptor,
    webhooks_fallback,
    WEBHOOKS_ENDPOINT,
    DEFAULT_WEBHOOKS_OBJECT,
)

__all__ = [
    "EndpointRegistry",
    "FileEndpointLoader",
    "build_descriptor",
    "webhooks_fallback",
    "WEBHOOKS_ENDPOINT",
    "DEFAULT_WEBHOOKS_OBJECT",
]
