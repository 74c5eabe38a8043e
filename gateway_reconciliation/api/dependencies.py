"""FastAPI dependencies."""
from fastapi import Request

from gateway_reconciliation.bootstrap import Components


def get_components(request: Request) -> Components:
    """Components built at startup (or injected by tests) on ``app.state``."""
    return request.app.state.components
