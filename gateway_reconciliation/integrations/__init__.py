"""Outbound integrations with the payment gateway."""
from .gateway_client import GatewayClient, GatewayError, GatewayErrorType

__all__ = ["GatewayClient", "GatewayError", "GatewayErrorType"]
