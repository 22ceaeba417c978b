from __future__ import annotations


def _split_first_rdn(dn: str) -> tuple[str, str]:
    """Split a DN into (first RDN, rest), honouring escaped commas."""
    first: list[str] = []
    esc = False
    for i, ch in enumerate(dn):
        if esc:
            first.append("\\" + ch)
            esc = False
            continue
        if ch == "\\":
            esc = True
            continue
        if ch == ",":
            return "".join(first).strip(), dn[i + 1:].strip()
        first.append(ch)
    return "".join(first).strip(), ""


def dn_parent(dn: str) -> str:
    """CN=Smith\\, John,OU=Staff,DC=corp -> OU=Staff,DC=corp"""
    s = (dn or "").strip()
    if not s:
        return ""
    _, rest = _split_first_rdn(s)
    return rest
