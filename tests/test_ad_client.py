"""Unit tests for the ldap3-backed directory client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from ldap3.core.exceptions import LDAPSocketOpenError

from adreport.ad import ADClient, ADConfig
from adreport.ad.client import IN_CHAIN_RULE, user_record_from_attributes

GROUP_IT = "CN=IT,OU=Groups,DC=corp,DC=example"
GROUP_OPS = "CN=Ops,OU=Groups,DC=corp,DC=example"


def _cfg(**kw):
    base = dict(
        dc_short="dc01",
        domain="corp.example",
        port=636,
        use_ssl=True,
        starttls=False,
        bind_username="svc",
        bind_password="pw",
    )
    base.update(kw)
    return ADConfig(**base)


def _user_entry(sam, dn=None, object_class=("top", "person", "user"), **attrs):
    dn = dn or f"CN={sam},OU=Staff,DC=corp,DC=example"
    a = {"sAMAccountName": sam, "objectClass": list(object_class), "distinguishedName": dn}
    a.update(attrs)
    return {"type": "searchResEntry", "dn": dn, "attributes": a}


def _group_entry(dn):
    return {"type": "searchResEntry", "dn": dn, "attributes": {"objectClass": ["top", "group"], "sAMAccountName": dn}}


@pytest.fixture
def conn():
    c = MagicMock()
    c.bind.return_value = True
    c.result = {"description": "success"}
    c.response = []
    return c


@pytest.fixture
def client(conn):
    with patch.object(ADClient, "_conn", return_value=conn):
        yield ADClient(_cfg())


def _resolves_to(conn, dn):
    entry = MagicMock()
    entry.entry_dn = dn
    conn.search.return_value = True
    conn.entries = [entry]


class TestUserRecordFromAttributes:
    def test_parses_core_attributes(self):
        rec = user_record_from_attributes(
            {
                "sAMAccountName": "alice",
                "displayName": "Alice Smith",
                "telephoneNumber": "+7 495 000-00-01",
                "proxyAddresses": ["SMTP:alice@example.com", "smtp:a@example.com"],
                "userAccountControl": 514,
                "lastLogonTimestamp": datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc),
                "mobile": [],
            },
            dn="CN=alice,OU=Staff,DC=corp,DC=example",
            ou="OU=Staff,DC=corp,DC=example",
        )
        assert rec.sam_account_name == "alice"
        assert rec.display_name == "Alice Smith"
        assert rec.office_phone == "+7 495 000-00-01"
        assert rec.mobile_phone == ""
        assert rec.proxy_addresses == ("SMTP:alice@example.com", "smtp:a@example.com")
        assert rec.enabled is False
        assert rec.last_logon == "2026-02-01T09:00:00+00:00"
        assert rec.distinguished_name == "CN=alice,OU=Staff,DC=corp,DC=example"

    def test_organizational_unit_is_parent_container(self):
        rec = user_record_from_attributes(
            {"sAMAccountName": "erin"},
            dn="CN=Erin\\, Sales,OU=Sales,OU=Staff,DC=corp,DC=example",
            ou="OU=Staff,DC=corp,DC=example",
        )
        assert rec.ou == "OU=Sales,OU=Staff,DC=corp,DC=example"

    def test_missing_uac_means_unknown(self):
        rec = user_record_from_attributes({"sAMAccountName": "bob", "userAccountControl": []})
        assert rec.enabled is None


class TestGetUsersInOU:
    def test_users_deduplicated_across_overlapping_ous(self, client, conn):
        alice = _user_entry("alice", userAccountControl=512)
        bob = _user_entry("bob", userAccountControl=512)
        conn.extend.standard.paged_search.side_effect = [
            iter([alice, {"type": "searchResRef"}, bob]),
            iter([alice]),
        ]

        ok, msg, users = client.get_users_in_ou(["OU=Staff,DC=corp,DC=example", "DC=corp,DC=example"])

        assert ok, msg
        assert [u.sam_account_name for u in users] == ["alice", "bob"]
        assert users[0].ou == "OU=Staff,DC=corp,DC=example"
        first = conn.extend.standard.paged_search.call_args_list[0].kwargs
        assert first["search_base"] == "OU=Staff,DC=corp,DC=example"
        assert "userAccountControl" not in first["search_filter"]
        conn.unbind.assert_called_once()

    def test_enabled_only_filter(self, conn):
        conn.extend.standard.paged_search.return_value = iter([])
        with patch.object(ADClient, "_conn", return_value=conn):
            ok, _, users = ADClient(_cfg(include_disabled=False)).get_users_in_ou(["OU=Staff,DC=corp,DC=example"])
        assert ok and users == []
        flt = conn.extend.standard.paged_search.call_args.kwargs["search_filter"]
        assert "1.2.840.113556.1.4.803:=2" in flt

    def test_bind_failure(self, client, conn):
        conn.bind.return_value = False
        conn.result = {"description": "invalidCredentials"}
        ok, msg, users = client.get_users_in_ou(["OU=Staff,DC=corp,DC=example"])
        assert not ok
        assert "invalidCredentials" in msg
        assert users == []

    def test_ldap_error_is_reported(self, client, conn):
        conn.extend.standard.paged_search.side_effect = LDAPSocketOpenError("unreachable")
        ok, msg, _ = client.get_users_in_ou(["OU=Staff,DC=corp,DC=example"])
        assert not ok
        assert "unreachable" in msg


class DirectoryTree:
    """Answers BASE reads and paged searches of a mocked connection from a dict."""

    def __init__(self, conn, entries, paged=None):
        self.conn = conn
        self.entries = {dn.lower(): (dn, attrs) for dn, attrs in entries.items()}
        self.paged = paged or {}
        conn.search.side_effect = self.search
        conn.extend.standard.paged_search.side_effect = self.paged_search

    def search(self, search_base, search_filter, search_scope, attributes, **kw):
        found = self.entries.get(search_base.lower())
        if found is None:
            self.conn.entries = []
            self.conn.response = []
            return False
        dn, attrs = found
        self.conn.entries = [MagicMock(entry_dn=dn)]
        self.conn.response = [{
            "type": "searchResEntry",
            "dn": dn,
            "attributes": {k: attrs[k] for k in attributes if k in attrs},
        }]
        return True

    def paged_search(self, **kw):
        for needle, results in self.paged.items():
            if needle in kw["search_filter"]:
                return iter(results)
        return iter([])


def _user(sam, **attrs):
    return {"objectClass": ["top", "person", "organizationalPerson", "user"], "sAMAccountName": sam, **attrs}


def _group(*members, token=None):
    attrs = {"objectClass": ["top", "group"], "member": list(members)}
    if token is not None:
        attrs["primaryGroupToken"] = token
    return attrs


def _dn(cn, ou="Staff"):
    return f"CN={cn},OU={ou},DC=corp,DC=example"


class TestGetGroupMembers:
    def test_in_chain_by_name(self, client, conn):
        _resolves_to(conn, GROUP_IT)
        conn.extend.standard.paged_search.return_value = iter([_user_entry("bob"), _user_entry("alice")])

        ok, msg, members = client.get_group_members("IT")

        assert ok, msg
        assert members == ["alice", "bob"]
        lookup = conn.search.call_args_list[0].kwargs
        assert "(sAMAccountName=IT)" in lookup["search_filter"]
        assert lookup["search_base"] == "DC=corp,DC=example"
        flt = conn.extend.standard.paged_search.call_args_list[0].kwargs["search_filter"]
        assert f"memberOf:{IN_CHAIN_RULE}:={GROUP_IT}" in flt
        assert "objectClass=user" in flt

    def test_group_by_dn(self, client, conn):
        _resolves_to(conn, GROUP_IT)
        conn.extend.standard.paged_search.return_value = iter([])
        ok, _, members = client.get_group_members(GROUP_IT)
        assert ok and members == []
        assert conn.search.call_args_list[0].kwargs["search_base"] == GROUP_IT

    def test_unknown_group(self, client, conn):
        conn.search.return_value = True
        conn.entries = []
        ok, msg, _ = client.get_group_members("Nope")
        assert not ok
        assert "Nope" in msg

    def test_ambiguous_group(self, client, conn):
        conn.search.return_value = True
        conn.entries = [MagicMock(), MagicMock()]
        ok, _, _ = client.get_group_members("IT")
        assert not ok

    def test_filter_value_is_escaped(self, client, conn):
        conn.search.return_value = True
        conn.entries = []
        client.get_group_members("R&D (old)*")
        assert "R&D \\28old\\29\\2a" in conn.search.call_args.kwargs["search_filter"]

    def test_in_chain_includes_primary_group_members(self, client, conn):
        domain_users = "CN=Domain Users,CN=Users,DC=corp,DC=example"
        DirectoryTree(
            conn,
            {domain_users: _group(token=513), GROUP_OPS: _group(token=1105)},
            paged={
                f"(objectClass=user)(memberOf:{IN_CHAIN_RULE}": [_user_entry("alice")],
                f"(objectClass=group)(memberOf:{IN_CHAIN_RULE}": [_group_entry(GROUP_OPS)],
                "primaryGroupID": [_user_entry("bob"), _user_entry("carol")],
            },
        )

        ok, msg, members = client.get_group_members(domain_users)

        assert ok, msg
        assert members == ["alice", "bob", "carol"]
        flt = conn.extend.standard.paged_search.call_args_list[-1].kwargs["search_filter"]
        assert "(primaryGroupID=513)" in flt
        assert "(primaryGroupID=1105)" in flt

    def test_direct_members_only(self, client, conn):
        DirectoryTree(conn, {
            GROUP_IT: _group(_dn("bob"), GROUP_OPS, _dn("WS01$", "Computers")),
            _dn("bob"): _user("bob"),
            GROUP_OPS: _group(_dn("alice")),
            _dn("WS01$", "Computers"): {"objectClass": ["top", "person", "user", "computer"], "sAMAccountName": "WS01$"},
        })

        ok, _, members = client.get_group_members(GROUP_IT, recursive=False)

        assert ok and members == ["bob"]

    def test_walk_mode_follows_member_attribute_and_handles_cycles(self, conn):
        DirectoryTree(conn, {
            GROUP_IT: _group(_dn("alice"), GROUP_OPS),
            GROUP_OPS: _group(_dn("bob"), _dn("alice"), GROUP_IT, _dn("ghost")),
            _dn("alice"): _user("alice"),
            _dn("bob"): _user("bob"),
        })

        with patch.object(ADClient, "_conn", return_value=conn):
            ok, msg, members = ADClient(_cfg(membership_mode="walk")).get_group_members(GROUP_IT)

        assert ok, msg
        assert members == ["alice", "bob"]
        conn.extend.standard.paged_search.assert_not_called()

    def test_walk_mode_on_non_ad_groups(self, conn):
        team = "cn=team,ou=groups,dc=example,dc=org"
        DirectoryTree(conn, {
            team: {"objectClass": ["groupOfNames"], "member": ["uid=jdoe,ou=people,dc=example,dc=org"]},
            "uid=jdoe,ou=people,dc=example,dc=org": {"objectClass": ["inetOrgPerson"], "uid": "jdoe"},
        })

        with patch.object(ADClient, "_conn", return_value=conn):
            ok, msg, members = ADClient(_cfg(membership_mode="walk")).get_group_members(team)

        assert ok, msg
        assert members == ["jdoe"]

    def test_walk_mode_includes_primary_group_members(self, conn):
        DirectoryTree(
            conn,
            {GROUP_IT: _group(_dn("alice"), token=1104), _dn("alice"): _user("alice")},
            paged={"(primaryGroupID=1104)": [_user_entry("dave")]},
        )

        with patch.object(ADClient, "_conn", return_value=conn):
            ok, _, members = ADClient(_cfg(membership_mode="walk")).get_group_members(GROUP_IT)

        assert ok
        assert members == ["alice", "dave"]


def test_service_bind_reports_socket_errors():
    with patch.object(ADClient, "_conn", side_effect=LDAPSocketOpenError("no route")):
        ok, res = ADClient(_cfg()).service_bind()
    assert not ok
    assert "no route" in res["description"]
