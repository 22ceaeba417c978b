from __future__ import annotations

from collections import deque
from typing import Any, Iterator
import hashlib
import logging
import os
import ssl
import tempfile

from ldap3 import (
    Server,
    Connection,
    ALL,
    SUBTREE,
    BASE,
    Tls,
)
from ldap3.core.exceptions import LDAPException

from ..ad_utils import looks_like_dn
from ..utils.dn import dn_parent
from .models import ADConfig, UserRecord
from .utils import escape_ldap_filter_value, filetime_to_dt_str, is_account_enabled

log = logging.getLogger(__name__)

# LDAP_MATCHING_RULE_IN_CHAIN: transitive memberOf evaluation on the DC side.
IN_CHAIN_RULE = "1.2.840.113556.1.4.1941"

USER_FILTER = "(&(objectCategory=person)(objectClass=user))"
ENABLED_USER_FILTER = "(&(objectCategory=person)(objectClass=user)(!(userAccountControl:1.2.840.113556.1.4.803:=2)))"

USER_ATTRIBUTES = [
    "distinguishedName",
    "sAMAccountName",
    "displayName",
    "givenName",
    "sn",
    "title",
    "department",
    "company",
    "telephoneNumber",
    "mobile",
    "mail",
    "proxyAddresses",
    "userAccountControl",
    "lastLogonTimestamp",
]


def _first(v: Any, default: str = "") -> str:
    """Single string out of an ldap3 attribute value (scalar or list)."""
    if v is None:
        return default
    if isinstance(v, (list, tuple)):
        return str(v[0]).strip() if v else default
    return str(v).strip()


def _many(v: Any) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, (list, tuple)):
        return tuple(str(x).strip() for x in v if str(x).strip())
    s = str(v).strip()
    return (s,) if s else ()


def user_record_from_attributes(attrs: dict, *, dn: str = "", ou: str = "") -> UserRecord:
    """Build a UserRecord from a paged_search `attributes` dict.

    OrganizationalUnit is the container the account lives in; `ou` (the
    searched base) is only used when the entry carries no DN.
    """
    dn = _first(attrs.get("distinguishedName")) or dn
    return UserRecord(
        sam_account_name=_first(attrs.get("sAMAccountName")),
        display_name=_first(attrs.get("displayName")),
        given_name=_first(attrs.get("givenName")),
        surname=_first(attrs.get("sn")),
        title=_first(attrs.get("title")),
        department=_first(attrs.get("department")),
        company=_first(attrs.get("company")),
        office_phone=_first(attrs.get("telephoneNumber")),
        mobile_phone=_first(attrs.get("mobile")),
        email_address=_first(attrs.get("mail")),
        proxy_addresses=_many(attrs.get("proxyAddresses")),
        enabled=is_account_enabled(_first(attrs.get("userAccountControl")) or None),
        last_logon=filetime_to_dt_str(_raw_scalar(attrs.get("lastLogonTimestamp"))) or "",
        distinguished_name=dn,
        ou=dn_parent(dn) or ou,
    )


def _raw_scalar(v: Any) -> Any:
    if isinstance(v, (list, tuple)):
        return v[0] if v else None
    return v


def _close(conn: Connection | None) -> None:
    if not conn:
        return
    try:
        conn.unbind()
    except LDAPException:
        log.debug("unbind failed", exc_info=True)


class ADClient:
    """Read-only directory client used by the report run.

    Methods follow the `(ok, message, data)` convention: LDAP failures are
    reported through `ok=False` and a human-readable message, never raised.
    """

    @staticmethod
    def _normalize_pem(pem: str) -> str:
        """Normalize PEM text (strip outer whitespace and normalize line endings)."""
        data = (pem or "").strip()
        data = data.replace("\r\n", "\n").replace("\r", "\n")
        return data

    @staticmethod
    def _ensure_ca_file(pem: str) -> str:
        """Materialize CA PEM into a stable file path.

        ldap3.Tls supports ca_certs_file across versions, so the PEM is stored
        in the temp dir under a content hash and reused by later runs.
        """

        data = ADClient._normalize_pem(pem)
        if not data:
            return ""

        if "-----BEGIN CERTIFICATE-----" not in data or "-----END CERTIFICATE-----" not in data:
            raise ValueError("CA PEM не похож на сертификат (ожидается блок BEGIN/END CERTIFICATE)")

        h = hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]
        path = os.path.join(tempfile.gettempdir(), f"adreport_ca_{h}.pem")

        try:
            if os.path.exists(path):
                with open(path, "r", encoding="utf-8") as f:
                    if f.read().strip() == data:
                        return path

            with open(path, "w", encoding="utf-8") as f:
                f.write(data)
                if not data.endswith("\n"):
                    f.write("\n")
            os.chmod(path, 0o600)
        except OSError:
            # Read-only temp dir: fall back to the system trust store.
            log.warning("Не удалось сохранить CA PEM в %s", path, exc_info=True)
            return ""

        return path

    def __init__(self, cfg: ADConfig) -> None:
        self.cfg = cfg

        tls_kwargs: dict[str, Any] = {
            "validate": ssl.CERT_REQUIRED if cfg.tls_validate else ssl.CERT_NONE,
        }
        ca_pem = self._normalize_pem(cfg.ca_pem or "")
        if cfg.tls_validate and ca_pem:
            ca_file = self._ensure_ca_file(ca_pem)
            if ca_file:
                tls_kwargs["ca_certs_file"] = ca_file

        tls = Tls(**tls_kwargs)

        self.server = Server(
            host=cfg.host,
            port=cfg.port,
            use_ssl=cfg.use_ssl,
            get_info=ALL,
            tls=tls,
            connect_timeout=float(cfg.timeout_s),
        )

    def _conn(self, user: str, password: str) -> Connection:
        conn = Connection(
            self.server,
            user=user,
            password=password,
            auto_bind=False,
            receive_timeout=int(self.cfg.timeout_s),
        )
        conn.open()
        if self.cfg.starttls:
            conn.start_tls()
        return conn

    def _bind_error(self, conn: Connection) -> str:
        res = dict(conn.result or {})
        return f"Ошибка bind: {res.get('description', 'неизвестная ошибка')}"

    def _paged(self, conn: Connection, base: str, flt: str, attrs: list[str], scope=SUBTREE) -> Iterator[dict]:
        """Yield searchResEntry dicts; ldap3 raises LDAPException on a failed page."""
        for entry in conn.extend.standard.paged_search(
            search_base=base,
            search_filter=flt,
            search_scope=scope,
            attributes=attrs,
            paged_size=int(self.cfg.page_size),
            generator=True,
        ):
            if entry.get("type") != "searchResEntry":
                continue
            yield entry

    def service_bind(self) -> tuple[bool, dict]:
        conn: Connection | None = None
        try:
            conn = self._conn(self.cfg.bind_principal, self.cfg.bind_password)
            ok = bool(conn.bind())
            res = dict(conn.result or {})
            return ok, res
        except LDAPException as e:
            return False, {"error": str(e), "description": str(e), "message": str(e)}
        finally:
            _close(conn)

    # ---------------------------
    # Users
    # ---------------------------

    def get_users_in_ou(self, ous: list[str]) -> tuple[bool, str, list[UserRecord]]:
        """Return all user accounts under the given OUs (subtree).

        A user reachable from two overlapping OUs is returned once.
        """
        if not ous:
            return True, "OK", []

        flt = USER_FILTER if self.cfg.include_disabled else ENABLED_USER_FILTER

        conn: Connection | None = None
        try:
            conn = self._conn(self.cfg.bind_principal, self.cfg.bind_password)
            if not conn.bind():
                return False, self._bind_error(conn), []

            seen: set[str] = set()
            items: list[UserRecord] = []
            for ou in ous:
                n = 0
                for entry in self._paged(conn, ou, flt, USER_ATTRIBUTES):
                    dn = str(entry.get("dn", "") or "")
                    key = dn.lower()
                    if key in seen:
                        continue
                    seen.add(key)
                    items.append(user_record_from_attributes(entry.get("attributes", {}) or {}, dn=dn, ou=ou))
                    n += 1
                log.info("OU %s: найдено пользователей %d", ou, n)

            items.sort(key=lambda u: (u.display_name or u.sam_account_name).lower())
            return True, "OK", items

        except LDAPException as e:
            return False, f"LDAP ошибка: {e}", []
        finally:
            _close(conn)

    # ---------------------------
    # Groups
    # ---------------------------

    def _resolve_group_dn(self, conn: Connection, group: str) -> tuple[bool, str, str]:
        """Group name (sAMAccountName/cn) or DN -> DN of an existing group."""
        g = (group or "").strip()
        if not g:
            return False, "Пустое имя группы.", ""

        if looks_like_dn(g):
            ok = conn.search(
                search_base=g,
                search_filter="(objectClass=group)",
                search_scope=BASE,
                attributes=["distinguishedName"],
                size_limit=1,
            )
            if not ok or len(conn.entries) != 1:
                return False, f"Группа не найдена: {g}", ""
            return True, "OK", str(conn.entries[0].entry_dn)

        base = self.cfg.base_dn
        if not base:
            return False, "BaseDN пустой (проверьте домен в настройках).", ""

        safe = escape_ldap_filter_value(g)
        ok = conn.search(
            search_base=base,
            search_filter=f"(&(objectClass=group)(|(sAMAccountName={safe})(cn={safe})))",
            search_scope=SUBTREE,
            attributes=["distinguishedName"],
            size_limit=2,
        )
        if not ok or not conn.entries:
            return False, f"Группа не найдена: {g}", ""
        if len(conn.entries) > 1:
            return False, f"Имя группы неоднозначно (найдено несколько): {g}", ""
        return True, "OK", str(conn.entries[0].entry_dn)

    def _read_entry(self, conn: Connection, dn: str, attrs: list[str]) -> dict | None:
        """Attributes of a single entry (BASE scope), or None if it cannot be read."""
        ok = conn.search(
            search_base=dn,
            search_filter="(objectClass=*)",
            search_scope=BASE,
            attributes=attrs,
        )
        if not ok:
            return None
        for item in conn.response or []:
            if item.get("type") == "searchResEntry":
                return item.get("attributes", {}) or {}
        return None

    def _group_token(self, conn: Connection, group_dn: str) -> int | None:
        """RID users carry in primaryGroupID; constructed, so only readable at BASE scope."""
        attrs = self._read_entry(conn, group_dn, ["primaryGroupToken"])
        raw = _first((attrs or {}).get("primaryGroupToken"))
        try:
            return int(raw) if raw else None
        except ValueError:
            return None

    def _primary_group_members(self, conn: Connection, group_dns: list[str]) -> set[str]:
        """Users whose primary group (not listed in memberOf/member) is one of `group_dns`."""
        tokens = sorted({t for t in (self._group_token(conn, dn) for dn in group_dns) if t is not None})
        if not tokens:
            return set()
        ids = "".join(f"(primaryGroupID={t})" for t in tokens)
        flt = f"(&(objectCategory=person)(objectClass=user)(|{ids}))"
        members: set[str] = set()
        for entry in self._paged(conn, self.cfg.base_dn, flt, ["sAMAccountName"]):
            sam = _first((entry.get("attributes", {}) or {}).get("sAMAccountName"))
            if sam:
                members.add(sam)
        return members

    def _direct_members(self, conn: Connection, group_dn: str) -> tuple[list[str], list[str]]:
        """Direct members from the group's `member` attribute: (user names, nested group DNs).

        Users are named by sAMAccountName, or uid on non-AD servers; computers
        and unreadable members are skipped.
        """
        attrs = self._read_entry(conn, group_dn, ["member"]) or {}
        users: list[str] = []
        groups: list[str] = []
        for member_dn in _many(attrs.get("member")):
            a = self._read_entry(conn, member_dn, ["objectClass", "sAMAccountName", "uid"])
            if a is None:
                log.debug("Участник %s группы %s недоступен", member_dn, group_dn)
                continue
            obj_classes = {str(c).lower() for c in (a.get("objectClass") or [])}
            if obj_classes & {"group", "groupofnames", "groupofuniquenames"}:
                groups.append(member_dn)
            elif obj_classes & {"user", "person", "inetorgperson"} and "computer" not in obj_classes:
                name = _first(a.get("sAMAccountName")) or _first(a.get("uid"))
                if name:
                    users.append(name)
        return users, groups

    def _walk_members(self, conn: Connection, group_dn: str) -> list[str]:
        """Breadth-first expansion of nested groups; cycles are visited once."""
        visited: dict[str, str] = {group_dn.lower(): group_dn}
        queue: deque[str] = deque([group_dn])
        members: set[str] = set()
        while queue:
            current = queue.popleft()
            users, nested = self._direct_members(conn, current)
            members.update(users)
            for g in nested:
                if g.lower() not in visited:
                    visited[g.lower()] = g
                    queue.append(g)
        members.update(self._primary_group_members(conn, list(visited.values())))
        return sorted(members)

    def _in_chain_members(self, conn: Connection, group_dn: str) -> list[str]:
        escaped = escape_ldap_filter_value(group_dn)
        flt = f"(&(objectCategory=person)(objectClass=user)(memberOf:{IN_CHAIN_RULE}:={escaped}))"
        members: set[str] = set()
        for entry in self._paged(conn, self.cfg.base_dn, flt, ["sAMAccountName"]):
            sam = _first((entry.get("attributes", {}) or {}).get("sAMAccountName"))
            if sam:
                members.add(sam)

        nested_flt = f"(&(objectClass=group)(memberOf:{IN_CHAIN_RULE}:={escaped}))"
        groups = [group_dn] + [
            str(e.get("dn", "") or "")
            for e in self._paged(conn, self.cfg.base_dn, nested_flt, ["distinguishedName"])
        ]
        members.update(self._primary_group_members(conn, [g for g in groups if g]))
        return sorted(members)

    def get_group_members(self, group: str, recursive: bool = True) -> tuple[bool, str, list[str]]:
        """Return sAMAccountName of every user member of `group`.

        With recursive=True members of nested groups are included. Users whose
        primary group is the group (or a nested one) count as members.
        """
        conn: Connection | None = None
        try:
            conn = self._conn(self.cfg.bind_principal, self.cfg.bind_password)
            if not conn.bind():
                return False, self._bind_error(conn), []

            ok, msg, group_dn = self._resolve_group_dn(conn, group)
            if not ok:
                return False, msg, []

            if not recursive:
                users, _ = self._direct_members(conn, group_dn)
                return True, "OK", sorted(set(users) | self._primary_group_members(conn, [group_dn]))

            if self.cfg.membership_mode == "walk":
                return True, "OK", self._walk_members(conn, group_dn)
            return True, "OK", self._in_chain_members(conn, group_dn)

        except LDAPException as e:
            return False, f"LDAP ошибка: {e}", []
        finally:
            _close(conn)
