from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from .utils.numbers import coerce_numeric

log = logging.getLogger(__name__)

_MIN_WIDTH = 8
_MAX_WIDTH = 60


@dataclass
class TableOptions:
    auto_size: bool = True
    bold_header: bool = True
    freeze_header: bool = True
    sheet_name: str = "Users"
    table_name: str = "Users"
    no_numeric_columns: list[str] = field(default_factory=list)
    table_style: str = "TableStyleMedium2"


def report_path(output_dir: str | Path, prefix: str, now: datetime | None = None) -> Path:
    """Timestamped, per-run file name: <prefix>_<YYYYmmdd_HHMMSS>.xlsx"""
    ts = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return Path(output_dir) / f"{prefix}_{ts}.xlsx"


def _cell_value(column: str, value: Any, text_columns: set[str]) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if column in text_columns:
            return value
        return coerce_numeric(value)
    return value


def _autosize(ws, header: list[str], rows: list[list[Any]]) -> None:
    for i, col in enumerate(header, start=1):
        width = len(str(col))
        for r in rows:
            v = r[i - 1]
            if v is not None:
                width = max(width, len(str(v)))
        ws.column_dimensions[get_column_letter(i)].width = max(_MIN_WIDTH, min(_MAX_WIDTH, width + 2))


def build_workbook(
    rows: list[Mapping[str, Any]],
    options: TableOptions,
    header: list[str] | None = None,
) -> Workbook:
    cols = list(header) if header else (list(rows[0].keys()) if rows else [])
    text_columns = set(options.no_numeric_columns or [])

    wb = Workbook()
    ws = wb.active
    ws.title = options.sheet_name

    ws.append(cols)
    if options.bold_header:
        for cell in ws[1]:
            cell.font = Font(bold=True)

    values: list[list[Any]] = []
    for row in rows:
        line = [_cell_value(c, row.get(c), text_columns) for c in cols]
        values.append(line)
        ws.append(line)

    if options.freeze_header:
        ws.freeze_panes = "A2"

    # Excel table over header + data; a table without data rows is not valid,
    # and neither is one whose headers repeat in another letter case.
    if options.table_name and cols and values:
        if len({str(c).casefold() for c in cols}) != len(cols):
            log.warning("Заголовки колонок повторяются без учёта регистра; таблица Excel не создаётся")
        else:
            ref = f"A1:{get_column_letter(len(cols))}{len(values) + 1}"
            table = Table(displayName=options.table_name, ref=ref)
            table.tableStyleInfo = TableStyleInfo(name=options.table_style, showRowStripes=True)
            ws.add_table(table)

    if options.auto_size and cols:
        _autosize(ws, cols, values)

    return wb


def write_table(
    rows: Iterable[Mapping[str, Any]],
    path: str | Path,
    options: TableOptions | None = None,
    *,
    header: list[str] | None = None,
) -> tuple[bool, str, Path]:
    """Write rows to a fresh .xlsx file at `path`.

    Any existing file at `path` is removed first. The workbook is saved to a
    temporary sibling and moved into place, so `path` never holds a partial file.
    Returns: (ok, message, path)
    """
    options = options or TableOptions()
    path = Path(path)
    rows = list(rows)

    tmp_path = ""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            log.info("Удаляю существующий файл отчёта %s", path)
            path.unlink()

        wb = build_workbook(rows, options, header=header)

        fd, tmp_path = tempfile.mkstemp(prefix=".adreport-", suffix=".xlsx", dir=str(path.parent))
        os.close(fd)
        wb.save(tmp_path)
        os.replace(tmp_path, path)
        tmp_path = ""
    except (OSError, ValueError) as e:
        return False, f"Не удалось записать отчёт {path}: {e}", path
    finally:
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                log.warning("Не удалось удалить временный файл %s", tmp_path, exc_info=True)

    log.info("Отчёт записан: %s (строк: %d)", path, len(rows))
    return True, "OK", path
