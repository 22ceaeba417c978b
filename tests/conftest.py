from __future__ import annotations

from datetime import datetime

import pytest

from adreport.ad.models import UserRecord
from adreport.config import parse_config
from adreport.env_settings import get_env


class FakeDirectory:
    """In-memory stand-in for ADClient."""

    def __init__(self, users=None, groups=None, failing_groups=(), users_error=""):
        self.users = list(users or [])
        self.groups = dict(groups or {})
        self.failing_groups = set(failing_groups)
        self.users_error = users_error
        self.group_calls: list[str] = []
        self.ou_calls: list[list[str]] = []

    def get_group_members(self, group, recursive=True):
        self.group_calls.append(group)
        if group in self.failing_groups:
            return False, f"LDAP ошибка: lookup of {group} failed", []
        if group not in self.groups:
            return False, f"Группа не найдена: {group}", []
        return True, "OK", list(self.groups[group])

    def get_users_in_ou(self, ous):
        self.ou_calls.append(list(ous))
        if self.users_error:
            return False, self.users_error, []
        return True, "OK", list(self.users)


class FakeNotifier:
    def __init__(self, send_ok=True, alert_ok=True):
        self.send_ok = send_ok
        self.alert_ok = alert_ok
        self.sent: list[dict] = []
        self.alerts: list[dict] = []

    def send(self, to, bcc, subject, html_body, attachments=()):
        self.sent.append({
            "to": list(to),
            "bcc": list(bcc),
            "subject": subject,
            "html_body": html_body,
            "attachments": list(attachments),
        })
        return (True, "OK") if self.send_ok else (False, "Ошибка отправки почты: connection refused")

    def send_admin_alert(self, admins, error_text, subject="FAILURE"):
        self.alerts.append({"admins": list(admins), "text": error_text, "subject": subject})
        return (True, "OK") if self.alert_ok else (False, "smtp down")


def make_user(sam: str, **kw) -> UserRecord:
    kw.setdefault("display_name", sam.capitalize())
    kw.setdefault("distinguished_name", f"CN={sam},OU=Staff,DC=corp,DC=example")
    kw.setdefault("ou", "OU=Staff,DC=corp,DC=example")
    return UserRecord(sam_account_name=sam, **kw)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ADREPORT_SECRET_KEY", "ADREPORT_AD_BIND_PASSWORD", "ADREPORT_SMTP_PASSWORD", "ADREPORT_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_env.cache_clear()
    yield
    get_env.cache_clear()


@pytest.fixture
def base_payload(tmp_path):
    return {
        "recipients": ["reports@example.com"],
        "bcc": ["audit@example.com"],
        "admins": ["admins@example.com"],
        "ous": ["OU=Staff,DC=corp,DC=example"],
        "groups": ["Finance", "IT"],
        "ad": {"dc_short": "dc01", "domain": "corp.example", "bind_username": "svc", "bind_password": "pw"},
        "smtp": {"host": "mail.example.com", "sender": "adreport@example.com"},
        "report": {"output_dir": str(tmp_path / "reports")},
        "logging": {"dir": str(tmp_path / "logs")},
    }


@pytest.fixture
def report_config(base_payload):
    return parse_config(base_payload)


@pytest.fixture
def scenario_directory():
    return FakeDirectory(
        users=[make_user("alice"), make_user("bob"), make_user("carol")],
        groups={"Finance": ["alice"], "IT": ["bob", "alice"]},
    )


@pytest.fixture
def fixed_now():
    return lambda: datetime(2026, 3, 1, 7, 30, 0)
