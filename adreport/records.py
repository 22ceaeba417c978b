from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .ad.models import UserRecord
from .membership import MembershipIndex, membership_flags

log = logging.getLogger(__name__)

MULTI_VALUE_DELIMITER = ", "

# Export column -> UserRecord field (AD PowerShell naming).
USER_COLUMNS: list[tuple[str, str]] = [
    ("SamAccountName", "sam_account_name"),
    ("DisplayName", "display_name"),
    ("GivenName", "given_name"),
    ("Surname", "surname"),
    ("Title", "title"),
    ("Department", "department"),
    ("Company", "company"),
    ("OfficePhone", "office_phone"),
    ("MobilePhone", "mobile_phone"),
    ("EmailAddress", "email_address"),
    ("ProxyAddresses", "proxy_addresses"),
    ("Enabled", "enabled"),
    ("LastLogonDate", "last_logon"),
    ("DistinguishedName", "distinguished_name"),
    ("OrganizationalUnit", "ou"),
]

# Identifiers and free text: always written as text, never coerced to numbers.
TEXT_COLUMNS: frozenset[str] = frozenset({
    "SamAccountName",
    "DisplayName",
    "GivenName",
    "Surname",
    "OfficePhone",
    "MobilePhone",
    "EmailAddress",
    "ProxyAddresses",
    "LastLogonDate",
    "DistinguishedName",
    "OrganizationalUnit",
})

# Spreadsheet headers compare case-insensitively.
_USER_COLUMN_BY_KEY = {col.casefold(): col for col, _ in USER_COLUMNS}


def _user_column(name: str) -> str | None:
    """User column a group name collides with, if any."""
    return _USER_COLUMN_BY_KEY.get(name.casefold())


def _cell(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return MULTI_VALUE_DELIMITER.join(str(v) for v in value)
    return value


@dataclass(frozen=True)
class AugmentedUserRecord:
    user: UserRecord
    memberships: dict[str, bool] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        """Flat export row: user columns first, then one boolean per group.

        A group named like a user column (in any letter case) replaces that
        column's value.
        """
        row: dict[str, Any] = {col: _cell(getattr(self.user, attr)) for col, attr in USER_COLUMNS}
        for group, flag in self.memberships.items():
            row[_user_column(group) or group] = bool(flag)
        return row


def header_for(groups: Iterable[str]) -> list[str]:
    """Column order of the export, also used when there are no rows."""
    cols = [col for col, _ in USER_COLUMNS]
    for g in groups:
        if _user_column(g) is None and g not in cols:
            cols.append(g)
    return cols


def column_collisions(groups: Iterable[str]) -> list[str]:
    return [g for g in groups if _user_column(g) is not None]


def augment_user(user: UserRecord, flags: dict[str, bool]) -> AugmentedUserRecord:
    return AugmentedUserRecord(user=user, memberships=dict(flags))


def augment_users(
    users: Iterable[UserRecord],
    index: MembershipIndex,
    *,
    case_sensitive: bool = False,
) -> list[AugmentedUserRecord]:
    """One augmented record per input user, in input order."""
    for name in column_collisions(index):
        log.warning("Имя группы '%s' совпадает с колонкой пользователя; значение колонки будет заменено", name)

    return [
        augment_user(u, membership_flags(u.sam_account_name, index, case_sensitive=case_sensitive))
        for u in users
    ]
