from .permissions import AdminPolicy, StaticAdminPolicy, can_manage, load_admin_policy
from .session import (
    AuthError,
    Claim,
    Identity,
    SessionAuthenticator,
    SessionConfig,
    load_session_config,
    resolve_identity,
)

__all__ = [
    "AdminPolicy",
    "AuthError",
    "Claim",
    "Identity",
    "SessionAuthenticator",
    "SessionConfig",
    "StaticAdminPolicy",
    "can_manage",
    "load_admin_policy",
    "load_session_config",
    "resolve_identity",
]
