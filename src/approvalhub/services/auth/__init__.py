"""Service authentication module."""

from approvalhub.services.auth.dependencies import (
    ServiceContext,
    get_service_context,
    require_permission,
)
from approvalhub.services.auth.gate import (
    ServiceAuthContext,
    ServiceAuthGate,
    get_auth_gate,
    has_permission,
    reset_auth_gate,
)

__all__ = [
    "ServiceAuthContext",
    "ServiceAuthGate",
    "ServiceContext",
    "get_auth_gate",
    "get_service_context",
    "has_permission",
    "require_permission",
    "reset_auth_gate",
]
