"""Command line entry point: `adreport run|check|encrypt-secret`."""
from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path

from .ad import ADClient
from .config import load_alert_settings, load_config
from .config.schema import ReportConfig
from .crypto import ENC_PREFIX, encrypt_str
from .errors import ConfigurationError
from .log_config import setup_logging
from .notifier import Notifier
from .runner import ReportRunner, fail_before_run

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="adreport",
        description="AD user report with nested group membership columns (READ-ONLY)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_p = subparsers.add_parser("run", help="Build the report and e-mail it")
    run_p.add_argument("--config", "-c", type=Path, required=True, help="Path to JSON configuration file")
    run_p.add_argument("--ou", action="append", default=None, help="OU DN to report on (repeatable, replaces config)")
    run_p.add_argument("--group", "-g", action="append", default=None, help="Group name or DN (repeatable, replaces config)")
    run_p.add_argument("--recipient", "-r", action="append", default=None, help="Report recipient (repeatable, replaces config)")
    run_p.add_argument("--output-dir", "-o", type=str, default=None, help="Directory for the .xlsx report")
    run_p.add_argument("--no-mail", action="store_true", help="Write the report but do not e-mail it")
    run_p.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ERROR")

    check_p = subparsers.add_parser("check", help="Validate the configuration and test the AD bind")
    check_p.add_argument("--config", "-c", type=Path, required=True, help="Path to JSON configuration file")

    enc_p = subparsers.add_parser("encrypt-secret", help="Encrypt a password for the config file (needs ADREPORT_SECRET_KEY)")
    enc_p.add_argument("--value", type=str, default=None, help="Value to encrypt (prompted if omitted)")

    return parser


def _setup_logging(cfg: ReportConfig) -> None:
    setup_logging(level=cfg.logging.level, log_dir=cfg.logging.dir, retention_days=cfg.logging.retention_days)


def _cmd_run(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(
            args.config,
            ous=args.ou,
            groups=args.group,
            recipients=args.recipient,
            output_dir=args.output_dir,
            log_level=args.log_level,
        )
    except ConfigurationError as e:
        # No usable config: console log, alert whoever the file still names.
        setup_logging(level="INFO", to_file=False)
        alert = load_alert_settings(args.config)
        notifier = Notifier(alert.smtp) if alert and alert.smtp.host else None
        return fail_before_run(e, admins=alert.admins if alert else [], notifier=notifier).exit_code

    _setup_logging(cfg)
    log.info("Запуск отчёта: OU=%d, групп=%d, получателей=%d", len(cfg.ous), len(cfg.groups), len(cfg.recipients))

    notifier = Notifier(cfg.smtp) if cfg.smtp.host else None
    runner = ReportRunner(cfg, None, notifier, directory_factory=ADClient, send_report=not args.no_mail)
    return runner.run().exit_code


def _cmd_check(args: argparse.Namespace) -> int:
    setup_logging(level="INFO", to_file=False)
    try:
        cfg = load_config(args.config)
    except ConfigurationError as e:
        log.error("Ошибка конфигурации: %s", e.message)
        return e.exit_code

    try:
        client = ADClient(cfg.ad.to_ad_config())
    except ValueError as e:
        log.error("Ошибка настроек AD: %s", e)
        return ConfigurationError.exit_code

    ok, res = client.service_bind()
    if not ok:
        log.error("Bind к AD не выполнен: %s", res.get("description") or res.get("message") or res)
        return 3
    log.info("Конфигурация корректна, bind к AD успешен")
    return 0


def _cmd_encrypt(args: argparse.Namespace) -> int:
    value = args.value if args.value is not None else getpass.getpass("Value: ")
    try:
        token = encrypt_str(value)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    print(ENC_PREFIX + token)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "run":
        return _cmd_run(args)
    if args.command == "check":
        return _cmd_check(args)
    return _cmd_encrypt(args)
