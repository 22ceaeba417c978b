from __future__ import annotations

import re
from typing import Literal, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from ..ad.models import ADConfig
from ..records import TEXT_COLUMNS
from ..report_writer import TableOptions

ADConnMode = Literal["ldaps", "starttls", "plain"]
MembershipMode = Literal["in_chain", "walk"]
SMTPSecurity = Literal["none", "starttls", "ssl"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_EMAIL_RE = re.compile(r"^[^@\s<>,;]+@[^@\s<>,;]+\.[^@\s<>,;]+$")
_TABLE_NAME_RE = re.compile(r"^[A-Za-z_\\][A-Za-z0-9_.]{0,254}$")


def _strip_list(v: list[str] | None) -> list[str]:
    return [(x or "").strip() for x in (v or []) if (x or "").strip()]


def _validate_emails(v: list[str]) -> list[str]:
    bad = [x for x in v if not _EMAIL_RE.match(x)]
    if bad:
        raise ValueError("Некорректный e-mail: " + "; ".join(bad))
    return v


class ADSettings(BaseModel):
    dc_short: str = Field(default="", max_length=64)
    domain: str = Field(default="", max_length=255)
    conn_mode: ADConnMode = Field(default="ldaps")
    port: int | None = Field(default=None, ge=1, le=65535)

    bind_username: str = Field(default="", max_length=128)
    bind_password: str = Field(default="")  # plaintext or enc:<token>

    tls_validate: bool = Field(default=False)
    ca_pem: str = Field(default="")

    membership_mode: MembershipMode = Field(default="in_chain")
    case_sensitive: bool = Field(default=False)
    include_disabled: bool = Field(default=True)
    timeout_s: int = Field(default=10, ge=1, le=300)
    page_size: int = Field(default=1000, ge=1, le=5000)

    @field_validator("dc_short", "domain", "bind_username")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("domain")
    @classmethod
    def _validate_domain(cls, v: str) -> str:
        s = (v or "").strip().lower()
        if not s:
            return s
        if s[-1] in ".,;":
            raise ValueError("Имя домена не должно оканчиваться на точку/запятую/точку с запятой.")
        labels = s.split(".")
        for lab in labels:
            if not lab:
                raise ValueError("Некорректное имя домена: пустая часть между точками.")
            if len(lab) > 63:
                raise ValueError(f"Некорректное имя домена: часть '{lab}' слишком длинная (макс 63).")
            if not re.fullmatch(r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?", lab):
                raise ValueError(f"Некорректное имя домена: недопустимые символы в части '{lab}'.")
        if len(s) > 253:
            raise ValueError("Некорректное имя домена: слишком длинное (макс 253).")
        return s

    @field_validator("dc_short")
    @classmethod
    def _validate_dc_short(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            return s
        # IP-адрес контроллера допустим как есть
        if re.fullmatch(r"\d{1,3}(?:\.\d{1,3}){3}", s):
            return s
        if any(ch in s for ch in ",;"):
            raise ValueError("Имя DC не должно содержать запятых.")
        if not re.fullmatch(r"[A-Za-z0-9](?:[A-Za-z0-9_.-]{0,62}[A-Za-z0-9])?", s):
            raise ValueError("Некорректное имя DC: используйте буквы/цифры/дефис/подчёркивание без пробелов.")
        return s

    def to_ad_config(self) -> ADConfig:
        if self.conn_mode == "ldaps":
            port, use_ssl, starttls = 636, True, False
        elif self.conn_mode == "starttls":
            port, use_ssl, starttls = 389, False, True
        else:
            port, use_ssl, starttls = 389, False, False

        return ADConfig(
            dc_short=self.dc_short,
            domain=self.domain,
            port=self.port or port,
            use_ssl=use_ssl,
            starttls=starttls,
            bind_username=self.bind_username,
            bind_password=self.bind_password,
            tls_validate=self.tls_validate,
            ca_pem=self.ca_pem,
            timeout_s=self.timeout_s,
            page_size=self.page_size,
            membership_mode=self.membership_mode,
            include_disabled=self.include_disabled,
        )


class SMTPSettings(BaseModel):
    host: str = Field(default="", max_length=255)
    port: int | None = Field(default=None, ge=1, le=65535)
    security: SMTPSecurity = Field(default="starttls")
    username: str = Field(default="", max_length=255)
    password: str = Field(default="")
    sender: str = Field(default="", max_length=255)
    timeout_s: int = Field(default=30, ge=1, le=600)

    @field_validator("host", "username", "sender")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        if self.security == "ssl":
            return 465
        if self.security == "starttls":
            return 587
        return 25


class ReportSettings(BaseModel):
    output_dir: str = Field(default="reports")
    file_prefix: str = Field(default="ADUsers", min_length=1, max_length=64)
    sheet_name: str = Field(default="Users", min_length=1, max_length=31)
    table_name: str = Field(default="Users")
    subject: str = Field(default="AD user / group membership report")
    no_numeric_columns: list[str] = Field(default_factory=lambda: ["OfficePhone", "MobilePhone"])
    auto_size: bool = Field(default=True)
    bold_header: bool = Field(default=True)
    freeze_header: bool = Field(default=True)

    @field_validator("file_prefix")
    @classmethod
    def _validate_prefix(cls, v: str) -> str:
        s = (v or "").strip()
        if not re.fullmatch(r"[A-Za-z0-9_.-]+", s):
            raise ValueError("Префикс файла: только буквы/цифры/точка/дефис/подчёркивание.")
        return s

    @field_validator("sheet_name")
    @classmethod
    def _validate_sheet_name(cls, v: str) -> str:
        s = (v or "").strip()
        if any(ch in s for ch in "[]:*?/\\"):
            raise ValueError("Имя листа Excel не может содержать символы []:*?/\\")
        return s

    @field_validator("table_name")
    @classmethod
    def _validate_table_name(cls, v: str) -> str:
        s = (v or "").strip()
        if s and not _TABLE_NAME_RE.match(s):
            raise ValueError("Имя таблицы Excel: буква/подчёркивание в начале, без пробелов.")
        return s

    @field_validator("no_numeric_columns")
    @classmethod
    def _strip_cols(cls, v: list[str]) -> list[str]:
        return _strip_list(v)

    def to_table_options(self) -> TableOptions:
        return TableOptions(
            auto_size=self.auto_size,
            bold_header=self.bold_header,
            freeze_header=self.freeze_header,
            sheet_name=self.sheet_name,
            table_name=self.table_name,
            no_numeric_columns=sorted(TEXT_COLUMNS | set(self.no_numeric_columns)),
        )


class LoggingSettings(BaseModel):
    level: LogLevel = Field(default="INFO")
    dir: str = Field(default="logs")
    retention_days: int = Field(default=30, ge=1, le=365)

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return str(v or "INFO").strip().upper()


class ReportConfig(BaseModel):
    """Typed configuration tree for one report run."""

    recipients: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    admins: list[str] = Field(default_factory=list)

    ous: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)

    ad: ADSettings = Field(default_factory=ADSettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    report: ReportSettings = Field(default_factory=ReportSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="before")
    @classmethod
    def _coerce_before_validate(cls, data: Any):
        if isinstance(data, dict):
            return coerce_legacy_payload(data)
        return data

    @field_validator("recipients", "bcc", "admins", "ous", "groups", mode="before")
    @classmethod
    def _as_list(cls, v: Any) -> Any:
        # "a@x; b@x" is accepted for convenience
        if isinstance(v, str):
            return [x for x in re.split(r"[;\n]", v)]
        return v

    @field_validator("recipients", "bcc", "admins", "ous", "groups")
    @classmethod
    def _strip_lists(cls, v: list[str]) -> list[str]:
        return _strip_list(v)

    @field_validator("recipients", "bcc", "admins")
    @classmethod
    def _emails(cls, v: list[str]) -> list[str]:
        return _validate_emails(v)


_LEGACY_KEYS = {
    "Recipients": "recipients",
    "To": "recipients",
    "Bcc": "bcc",
    "Admins": "admins",
    "OUs": "ous",
    "OU": "ous",
    "SearchBase": "ous",
    "Groups": "groups",
    "GroupNames": "groups",
}


def coerce_legacy_payload(raw: dict) -> dict:
    """Accept the flat PascalCase config shape of the older script.

    Old shape: {"Recipients": [...], "OUs": [...], "Groups": [...]}.
    Keys already in the current shape win over their legacy aliases.
    """
    out = dict(raw)
    for old, new in _LEGACY_KEYS.items():
        if old in out:
            value = out.pop(old)
            out.setdefault(new, value)
    return out


class AlertSettings(BaseModel):
    """The part of a config needed to alert administrators.

    Parsed on its own when the full config is rejected; invalid admin
    addresses are dropped instead of failing validation.
    """

    admins: list[str] = Field(default_factory=list)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)

    @model_validator(mode="before")
    @classmethod
    def _coerce_before_validate(cls, data: Any):
        if isinstance(data, dict):
            data = coerce_legacy_payload(data)
            return {k: data[k] for k in ("admins", "smtp") if k in data}
        return data

    @field_validator("admins", mode="before")
    @classmethod
    def _as_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [x for x in re.split(r"[;\n]", v)]
        return v

    @field_validator("admins")
    @classmethod
    def _valid_only(cls, v: list[str]) -> list[str]:
        return [x for x in _strip_list(v) if _EMAIL_RE.match(x)]
