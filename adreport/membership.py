"""Group membership cross-reference.

Builds a read-only index group -> member identifiers once per run and derives
per-user boolean flags from it.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping

from .errors import DirectoryQueryError

log = logging.getLogger(__name__)

MembershipIndex = Mapping[str, frozenset[str]]
MemberLookup = Callable[[str], "tuple[bool, str, list[str]]"]


def _key(value: str, case_sensitive: bool) -> str:
    s = (value or "").strip()
    return s if case_sensitive else s.casefold()


def normalize_group_names(groups: Iterable[str], *, case_sensitive: bool = False) -> list[str]:
    """Strip, drop empties, deduplicate and sort group identifiers.

    AD compares names case-insensitively, so by default `IT` and `it` are one
    group; the first spelling seen is kept.
    """
    seen: dict[str, str] = {}
    for raw in groups or []:
        name = (raw or "").strip()
        if not name:
            continue
        seen.setdefault(_key(name, case_sensitive), name)
    return [seen[k] for k in sorted(seen)]


def build_membership_index(
    groups: Iterable[str],
    resolve_members: MemberLookup,
    *,
    case_sensitive: bool = False,
) -> dict[str, frozenset[str]]:
    """Resolve every distinct group exactly once.

    `resolve_members` returns `(ok, message, members)`; the first failure
    aborts the whole index with DirectoryQueryError.
    """
    index: dict[str, frozenset[str]] = {}
    for group in normalize_group_names(groups, case_sensitive=case_sensitive):
        ok, msg, members = resolve_members(group)
        if not ok:
            raise DirectoryQueryError(f"Не удалось получить членов группы '{group}': {msg}")
        index[group] = frozenset(_key(m, case_sensitive) for m in members if (m or "").strip())
        log.info("Группа %s: участников %d", group, len(index[group]))
    return index


def membership_flags(
    join_key: str,
    index: MembershipIndex,
    *,
    case_sensitive: bool = False,
) -> dict[str, bool]:
    key = _key(join_key, case_sensitive)
    if not key:
        return {group: False for group in index}
    return {group: key in members for group, members in index.items()}
