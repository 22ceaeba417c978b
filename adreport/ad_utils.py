from __future__ import annotations

import ipaddress


def domain_to_base_dn(domain: str) -> str:
    domain = (domain or "").strip().strip(".")
    if not domain or "." not in domain:
        return ""
    parts = [p for p in domain.split(".") if p]
    return ",".join([f"DC={p}" for p in parts])


def build_dc_fqdn(dc_short: str, domain: str) -> str:
    dc_short = (dc_short or "").strip()
    domain = (domain or "").strip().strip(".")
    if not dc_short:
        return domain

    # IP-адрес контроллера используем как есть
    try:
        ipaddress.ip_address(dc_short)
        return dc_short
    except ValueError:
        if "." in dc_short:
            return dc_short
        return f"{dc_short}.{domain}" if domain else dc_short


def looks_like_dn(value: str) -> bool:
    """True for `CN=...,OU=...` style identifiers (vs. a bare group name)."""
    s = (value or "").strip()
    if "=" not in s:
        return False
    head = s.split(",", 1)[0]
    attr = head.split("=", 1)[0].strip().upper()
    return attr in {"CN", "OU", "DC", "O", "UID"}
