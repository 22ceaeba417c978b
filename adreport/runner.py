"""Report run controller.

INIT -> FETCHING_GROUPS -> FETCHING_USERS -> AUGMENTING -> WRITING -> NOTIFYING -> DONE;
any state may end in FAILED, which alerts the administrators and yields a
non-zero exit code.
"""
from __future__ import annotations

import enum
import logging
import socket
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol

from .ad.models import ADConfig, UserRecord
from .config.loader import missing_required
from .config.schema import ReportConfig
from .errors import (
    ConfigurationError,
    DirectoryQueryError,
    NotificationError,
    ReportError,
    ReportWriteError,
)
from .membership import build_membership_index
from .notifier import envelope_recipients, render_report_body
from .records import augment_users, header_for
from .report_writer import report_path, write_table

log = logging.getLogger(__name__)


class RunState(str, enum.Enum):
    INIT = "init"
    FETCHING_GROUPS = "fetching_groups"
    FETCHING_USERS = "fetching_users"
    AUGMENTING = "augmenting"
    WRITING = "writing"
    NOTIFYING = "notifying"
    DONE = "done"
    FAILED = "failed"


class Directory(Protocol):
    def get_users_in_ou(self, ous: list[str]) -> tuple[bool, str, list[UserRecord]]: ...

    def get_group_members(self, group: str, recursive: bool = True) -> tuple[bool, str, list[str]]: ...


class Mailer(Protocol):
    def send(self, to, bcc, subject, html_body, attachments=()) -> tuple[bool, str]: ...

    def send_admin_alert(self, admins, error_text, subject="FAILURE") -> tuple[bool, str]: ...


@dataclass
class RunResult:
    state: RunState
    exit_code: int
    user_count: int = 0
    output_path: Path | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _failure_text(step: RunState, err: str, ous: list[str], groups: list[str]) -> str:
    return (
        f"AD membership report failed on {socket.gethostname()}.\n\n"
        f"Step: {step.value}\n"
        f"Error: {err}\n\n"
        f"OUs: {', '.join(ous) or '-'}\n"
        f"Groups: {', '.join(groups) or '-'}\n"
    )


def alert_admins(notifier: Mailer | None, admins: list[str], text: str) -> None:
    """Best effort: a failed alert is logged, never raised."""
    if not admins or notifier is None:
        log.warning("Администраторы для уведомления об ошибке не настроены")
        return
    try:
        ok, msg = notifier.send_admin_alert(list(admins), text)
    except Exception:
        log.warning("Не удалось уведомить администраторов", exc_info=True)
        return
    if not ok:
        log.warning("Не удалось уведомить администраторов: %s", msg)


def _log_completion(state: RunState, user_count: int, output_path: Path | None, started: float) -> None:
    log.info(
        "Запуск завершён: состояние=%s, пользователей=%d, файл=%s, длительность=%.1f c",
        state.value,
        user_count,
        output_path or "-",
        time.monotonic() - started,
    )


def fail_before_run(
    error: ReportError,
    *,
    admins: list[str] | None = None,
    notifier: Mailer | None = None,
) -> RunResult:
    """Failure path for runs that never got a usable configuration."""
    started = time.monotonic()
    try:
        log.error("Ошибка (%s) на шаге %s: %s", error.kind, RunState.INIT.value, error.message)
        alert_admins(notifier, list(admins or []), _failure_text(RunState.INIT, error.message, [], []))
    finally:
        _log_completion(RunState.FAILED, 0, None, started)
    return RunResult(RunState.FAILED, error.exit_code, error=error.message)


class ReportRunner:
    """One report run.

    `directory` may be passed ready-made, or built lazily from the AD settings
    by `directory_factory` so that connection setup errors go through the same
    failure path as every other step.
    """

    def __init__(
        self,
        cfg: ReportConfig,
        directory: Directory | None,
        notifier: Mailer | None,
        *,
        directory_factory: Callable[[ADConfig], Directory] | None = None,
        writer: Callable = write_table,
        send_report: bool = True,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.cfg = cfg
        self.directory = directory
        self.directory_factory = directory_factory
        self.notifier = notifier
        self.writer = writer
        self.send_report = send_report
        self.now = now
        self.state = RunState.INIT
        self.user_count = 0
        self.output_path: Path | None = None

    def _enter(self, state: RunState) -> None:
        log.debug("Состояние: %s -> %s", self.state.value, state.value)
        self.state = state

    def _validate(self) -> None:
        missing = missing_required(self.cfg)
        if missing:
            raise ConfigurationError("Не заданы обязательные параметры: " + ", ".join(missing))
        if self.send_report and self.notifier is None:
            raise ConfigurationError("Отправка отчёта включена, но почта не настроена")

    def _connect(self) -> Directory:
        if self.directory is not None:
            return self.directory
        if self.directory_factory is None:
            raise ConfigurationError("Клиент каталога не задан")
        try:
            self.directory = self.directory_factory(self.cfg.ad.to_ad_config())
        except ValueError as e:
            raise ConfigurationError(f"Ошибка настроек AD: {e}")
        return self.directory

    def _execute(self) -> None:
        cfg = self.cfg
        case_sensitive = cfg.ad.case_sensitive

        self._validate()
        directory = self._connect()

        self._enter(RunState.FETCHING_GROUPS)
        index = build_membership_index(
            cfg.groups,
            lambda g: directory.get_group_members(g, recursive=True),
            case_sensitive=case_sensitive,
        )

        self._enter(RunState.FETCHING_USERS)
        ok, msg, users = directory.get_users_in_ou(list(cfg.ous))
        if not ok:
            raise DirectoryQueryError(f"Не удалось получить пользователей OU: {msg}")
        self.user_count = len(users)
        log.info("Найдено пользователей: %d", self.user_count)

        self._enter(RunState.AUGMENTING)
        records = augment_users(users, index, case_sensitive=case_sensitive)
        rows = [r.to_row() for r in records]

        self._enter(RunState.WRITING)
        target = report_path(cfg.report.output_dir, cfg.report.file_prefix, self.now())
        ok, msg, path = self.writer(rows, target, cfg.report.to_table_options(), header=header_for(index))
        if not ok:
            raise ReportWriteError(msg)
        self.output_path = Path(path)

        self._enter(RunState.NOTIFYING)
        if not self.send_report:
            log.info("Отправка отчёта отключена; файл: %s", self.output_path)
        else:
            body = render_report_body(
                user_count=self.user_count,
                recipient_count=len(envelope_recipients(cfg.recipients, cfg.bcc)),
                ous=list(cfg.ous),
                groups=list(index),
                report_name=self.output_path.name,
                generated_at=self.now(),
            )
            ok, msg = self.notifier.send(
                list(cfg.recipients), list(cfg.bcc), cfg.report.subject, body, [self.output_path]
            )
            if not ok:
                raise NotificationError(msg)

        self._enter(RunState.DONE)

    def _alert_admins(self, failed_in: RunState, err: str) -> None:
        text = _failure_text(failed_in, err, list(self.cfg.ous), list(self.cfg.groups))
        alert_admins(self.notifier, list(self.cfg.admins), text)

    def run(self) -> RunResult:
        started = time.monotonic()
        result: RunResult | None = None
        try:
            self._execute()
            result = RunResult(RunState.DONE, 0, self.user_count, self.output_path)
        except ReportError as e:
            failed_in = self.state
            log.error("Ошибка (%s) на шаге %s: %s", e.kind, failed_in.value, e.message)
            self._enter(RunState.FAILED)
            self._alert_admins(failed_in, e.message)
            result = RunResult(RunState.FAILED, e.exit_code, self.user_count, self.output_path, e.message)
        except Exception as e:
            failed_in = self.state
            log.exception("Непредвиденная ошибка на шаге %s", failed_in.value)
            self._enter(RunState.FAILED)
            self._alert_admins(failed_in, f"{type(e).__name__}: {e}")
            result = RunResult(RunState.FAILED, 1, self.user_count, self.output_path, str(e))
        finally:
            _log_completion(self.state, self.user_count, self.output_path, started)
        return result
