from .settings import (
    Settings,
    get_settings,
    provider_defaults,
    settings_public_summary,
    validate_for_env,
)
from .redaction import redact_secrets, safe_error_detail

__all__ = [
    "Settings",
    "get_settings",
    "provider_defaults",
    "settings_public_summary",
    "validate_for_env",
    "redact_secrets",
    "safe_error_detail",
]
