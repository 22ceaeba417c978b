from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..crypto import reveal
from ..env_settings import get_env
from ..errors import ConfigurationError
from .schema import AlertSettings, ReportConfig

log = logging.getLogger(__name__)


def parse_config(payload: str | bytes | dict) -> ReportConfig:
    """Parse + validate config JSON. Raises ConfigurationError on errors."""

    raw: Any = payload
    if not isinstance(payload, dict):
        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8-sig", errors="replace")
            raw = json.loads(payload)
        except ValueError as e:
            raise ConfigurationError(f"Некорректный JSON конфигурации: {e}")

    if not isinstance(raw, dict):
        raise ConfigurationError("Конфигурация должна быть JSON-объектом")

    try:
        return ReportConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Ошибка в конфигурации: {e}")


def resolve_secrets(cfg: ReportConfig) -> ReportConfig:
    """Apply environment overrides and decrypt `enc:` values."""
    env = get_env()
    ad_pw = env.ad_bind_password or cfg.ad.bind_password
    smtp_pw = env.smtp_password or cfg.smtp.password
    try:
        ad_pw = reveal(ad_pw)
        smtp_pw = reveal(smtp_pw)
    except ValueError as e:
        raise ConfigurationError(str(e))

    return cfg.model_copy(update={
        "ad": cfg.ad.model_copy(update={"bind_password": ad_pw}),
        "smtp": cfg.smtp.model_copy(update={"password": smtp_pw}),
    })


def apply_overrides(
    cfg: ReportConfig,
    *,
    ous: list[str] | None = None,
    groups: list[str] | None = None,
    recipients: list[str] | None = None,
    output_dir: str | None = None,
    log_level: str | None = None,
) -> ReportConfig:
    """Command-line values replace the corresponding config lists/fields."""
    data = cfg.model_dump()
    if ous:
        data["ous"] = list(ous)
    if groups:
        data["groups"] = list(groups)
    if recipients:
        data["recipients"] = list(recipients)
    if output_dir:
        data["report"]["output_dir"] = output_dir
    level = log_level or get_env().log_level
    if level:
        data["logging"]["level"] = level
    return parse_config(data)


def load_config(path: str | Path, **overrides: Any) -> ReportConfig:
    p = Path(path)
    try:
        payload = p.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Не удалось прочитать файл конфигурации {p}: {e}")

    cfg = parse_config(payload)
    cfg = apply_overrides(cfg, **overrides)
    log.debug("Конфигурация загружена из %s", p)
    return resolve_secrets(cfg)


def missing_required(cfg: ReportConfig) -> list[str]:
    """Names of required settings that are empty (recipients, OUs, groups)."""
    missing: list[str] = []
    if not cfg.recipients:
        missing.append("recipients")
    if not cfg.ous:
        missing.append("ous")
    if not cfg.groups:
        missing.append("groups")
    return missing


def load_alert_settings(path: str | Path) -> AlertSettings | None:
    """Admins and SMTP settings from a config file the full schema rejected.

    Returns None when even that much cannot be read.
    """
    try:
        raw = json.loads(Path(path).read_bytes().decode("utf-8-sig", errors="replace"))
    except (OSError, ValueError):
        return None
    if not isinstance(raw, dict):
        return None

    try:
        alert = AlertSettings.model_validate(raw)
    except ValidationError:
        log.debug("Настройки уведомления администраторов некорректны", exc_info=True)
        return None

    try:
        password = reveal(get_env().smtp_password or alert.smtp.password)
    except ValueError:
        log.warning("Не удалось расшифровать пароль SMTP для уведомления администраторов")
        return None
    return alert.model_copy(update={"smtp": alert.smtp.model_copy(update={"password": password})})
