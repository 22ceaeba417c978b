from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from ..ad_utils import domain_to_base_dn, build_dc_fqdn

MembershipMode = Literal["in_chain", "walk"]


@dataclass
class ADConfig:
    dc_short: str
    domain: str
    port: int
    use_ssl: bool
    starttls: bool
    bind_username: str
    bind_password: str
    tls_validate: bool = False
    ca_pem: str = ""
    timeout_s: int = 10
    page_size: int = 1000
    membership_mode: MembershipMode = "in_chain"
    include_disabled: bool = True

    @property
    def host(self) -> str:
        return build_dc_fqdn(self.dc_short, self.domain)

    @property
    def base_dn(self) -> str:
        return domain_to_base_dn(self.domain)

    @property
    def bind_principal(self) -> str:
        u = (self.bind_username or "").strip()
        d = (self.domain or "").strip().strip(".")
        if not u:
            return ""
        if "@" in u or "=" in u:
            return u
        return f"{u}@{d}" if d else u


@dataclass(frozen=True)
class UserRecord:
    """One directory user account as read from an OU.

    `sam_account_name` is the join key for group membership checks.
    Multi-valued attributes are kept as tuples; flattening happens at export.
    """

    sam_account_name: str
    display_name: str = ""
    given_name: str = ""
    surname: str = ""
    title: str = ""
    department: str = ""
    company: str = ""
    office_phone: str = ""
    mobile_phone: str = ""
    email_address: str = ""
    proxy_addresses: tuple[str, ...] = field(default_factory=tuple)
    enabled: bool | None = None
    last_logon: str = ""
    distinguished_name: str = ""
    ou: str = ""
