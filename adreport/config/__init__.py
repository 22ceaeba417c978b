"""Report configuration: typed schema (pydantic), JSON loading and secrets."""

from .schema import ReportConfig, ADSettings, SMTPSettings, ReportSettings, LoggingSettings, AlertSettings
from .loader import (
    load_config,
    load_alert_settings,
    parse_config,
    apply_overrides,
    resolve_secrets,
    missing_required,
)

__all__ = [
    "ReportConfig",
    "ADSettings",
    "SMTPSettings",
    "ReportSettings",
    "LoggingSettings",
    "AlertSettings",
    "load_config",
    "load_alert_settings",
    "parse_config",
    "apply_overrides",
    "resolve_secrets",
    "missing_required",
]
