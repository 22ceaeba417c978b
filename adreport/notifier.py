from __future__ import annotations

import logging
import mimetypes
import smtplib
import socket
import ssl
from datetime import datetime
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import Iterable

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config.schema import SMTPSettings

log = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).resolve().parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


def render_report_body(
    *,
    user_count: int,
    recipient_count: int,
    ous: list[str],
    groups: list[str],
    report_name: str,
    generated_at: datetime | None = None,
) -> str:
    tpl = _templates.get_template("report_email.html")
    return tpl.render(
        user_count=user_count,
        recipient_count=recipient_count,
        ous=ous,
        groups=groups,
        report_name=report_name,
        generated_at=(generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S"),
        host=socket.gethostname(),
    )


def envelope_recipients(to: Iterable[str], bcc: Iterable[str]) -> list[str]:
    """To + Bcc, each address once (compared case-insensitively), in order."""
    seen: set[str] = set()
    out: list[str] = []
    for addr in list(to) + list(bcc):
        key = addr.strip().casefold()
        if key and key not in seen:
            seen.add(key)
            out.append(addr.strip())
    return out


def _attach(msg: EmailMessage, path: Path) -> None:
    ctype = XLSX_MIME if path.suffix.lower() == ".xlsx" else (mimetypes.guess_type(path.name)[0] or "application/octet-stream")
    maintype, subtype = ctype.split("/", 1)
    msg.add_attachment(path.read_bytes(), maintype=maintype, subtype=subtype, filename=path.name)


class Notifier:
    """SMTP delivery of the report and of administrator alerts.

    Both entry points return `(ok, message)`; transport errors are not raised.
    """

    def __init__(self, smtp: SMTPSettings) -> None:
        self.cfg = smtp

    def _connect(self) -> smtplib.SMTP:
        host, port, timeout = self.cfg.host, self.cfg.effective_port, self.cfg.timeout_s
        if self.cfg.security == "ssl":
            server: smtplib.SMTP = smtplib.SMTP_SSL(host, port, timeout=timeout, context=ssl.create_default_context())
        else:
            server = smtplib.SMTP(host, port, timeout=timeout)
            if self.cfg.security == "starttls":
                server.starttls(context=ssl.create_default_context())
        if self.cfg.username:
            server.login(self.cfg.username, self.cfg.password)
        return server

    def _deliver(self, msg: EmailMessage, recipients: list[str]) -> tuple[bool, str]:
        if not self.cfg.host:
            return False, "SMTP сервер не задан (smtp.host)"
        if not self.cfg.sender:
            return False, "Не задан адрес отправителя (smtp.sender)"
        if not recipients:
            return False, "Пустой список получателей"

        try:
            with self._connect() as server:
                refused = server.send_message(msg, from_addr=self.cfg.sender, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            return False, f"Ошибка отправки почты через {self.cfg.host}: {e}"

        if refused:
            log.warning("Часть получателей отклонена сервером: %s", ", ".join(sorted(refused)))
        return True, "OK"

    def _message(self, to: list[str], subject: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.cfg.sender
        msg["To"] = ", ".join(to)
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid()
        return msg

    def send(
        self,
        to: list[str],
        bcc: list[str],
        subject: str,
        html_body: str,
        attachments: Iterable[str | Path] = (),
    ) -> tuple[bool, str]:
        """Send an HTML message with file attachments.

        Bcc addresses go to the SMTP envelope only, never into the headers.
        """
        msg = self._message(to, subject)
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(html_body, subtype="html")
        try:
            for a in attachments:
                _attach(msg, Path(a))
        except OSError as e:
            return False, f"Не удалось прочитать вложение: {e}"

        ok, text = self._deliver(msg, envelope_recipients(to, bcc))
        if ok:
            log.info("Письмо '%s' отправлено: получателей %d, скрытых %d", subject, len(to), len(bcc))
        return ok, text

    def send_admin_alert(self, admins: list[str], error_text: str, subject: str = "FAILURE") -> tuple[bool, str]:
        msg = self._message(admins, subject)
        msg["X-Priority"] = "1 (Highest)"
        msg["Importance"] = "High"
        msg.set_content(error_text)
        ok, text = self._deliver(msg, list(admins))
        if ok:
            log.info("Уведомление администраторам отправлено (%d адресатов)", len(admins))
        return ok, text
