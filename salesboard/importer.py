"""
Bulk import of a month of daily records from a spreadsheet, with one-step undo.
"""
import calendar
import datetime
import io
import logging
import numbers
import threading
from dataclasses import dataclass, field

import pandas as pd
from openpyxl.utils import get_column_letter

from salesboard.constants import (
    IMPORT_COLUMN_FIELDS,
    IMPORT_DATE_FORMAT,
    MONTH_FORMAT,
    RAW_INT_FIELDS,
    TEMPLATE_COLUMN_WIDTHS,
    TEMPLATE_HEADERS,
    TEMPLATE_SAMPLE_ROWS,
    TEMPLATE_SHEET_NAME,
)
from salesboard.validator import check_business_rules

logger = logging.getLogger(__name__)

# Day 0 of the spreadsheet serial date system (1900 date system, leap-year bug included)
EXCEL_EPOCH = datetime.date(1899, 12, 30)


class BulkImportError(ValueError):
    """Raised when an import request cannot be processed."""


class UndoUnavailableError(RuntimeError):
    """Raised when undo is requested but no import snapshot is held."""


@dataclass
class ParseResult:
    month: str
    total_rows: int = 0
    records: list = field(default_factory=list)
    errors: list = field(default_factory=list)


@dataclass
class ImportSnapshot:
    month: str
    records: list
    imported_ids: list
    timestamp: str


def parse_month(month: str):
    """
    Parses a 'YYYY-MM' month.

    Returns:
        tuple: (year, month) as ints.

    Raises:
        BulkImportError: If the month is missing or malformed.
    """
    try:
        parsed = datetime.datetime.strptime((month or "").strip(), MONTH_FORMAT)
    except ValueError:
        raise BulkImportError(f"Invalid month '{month}', expected format YYYY-MM")
    return parsed.year, parsed.month


def month_bounds(month: str):
    """First and last day of a 'YYYY-MM' month."""
    year, month_number = parse_month(month)
    last_day = calendar.monthrange(year, month_number)[1]
    return datetime.date(year, month_number, 1), datetime.date(year, month_number, last_day)


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return bool(pd.isna(value)) if isinstance(value, numbers.Real) else False


def parse_cell_date(value):
    """
    Reads a date cell.

    Accepts spreadsheet date cells, spreadsheet serial numbers and
    DD/MM/YYYY strings.

    Returns:
        datetime.date: The parsed date, or None when the cell is not a valid date.
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        return _serial_to_date(value)

    text = str(value).strip()
    try:
        return _serial_to_date(float(text))
    except ValueError:
        pass

    try:
        return datetime.datetime.strptime(text, IMPORT_DATE_FORMAT).date()
    except ValueError:
        return None


def _serial_to_date(serial):
    if serial <= 0:
        return None
    try:
        return EXCEL_EPOCH + datetime.timedelta(days=int(serial))
    except OverflowError:
        return None


def _to_float(value) -> float:
    """Numeric cell value; blanks and unreadable text count as 0."""
    if _is_blank(value) or isinstance(value, bool):
        return 0.0
    if isinstance(value, numbers.Real):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return 0.0


def _to_int(value) -> int:
    return int(_to_float(value))


def read_sheet(source, filename: str = "") -> pd.DataFrame:
    """
    Reads the first sheet of an .xlsx workbook, or a .csv file, without a header.

    Args:
        source: A path, bytes or a binary file-like object.
        filename (str): The uploaded file's name; a '.csv' suffix selects the CSV reader.

    Returns:
        pd.DataFrame: Raw cell values, row 0 being the header row.

    Raises:
        BulkImportError: If the file cannot be read.
    """
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)

    try:
        if filename.lower().endswith(".csv"):
            width = len(TEMPLATE_HEADERS)
            # Short rows are padded with NaN; cells past the last column are dropped
            return pd.read_csv(source, header=None, names=range(width), index_col=False, dtype=str,
                               skip_blank_lines=False, engine="python",
                               on_bad_lines=lambda line: line[:width])
        return pd.read_excel(source, sheet_name=0, header=None, dtype=object, engine="openpyxl")
    except Exception as e:
        logger.error(f"Failed to read uploaded file {filename}: {e}")
        raise BulkImportError(f"Failed to process file: {e}")


def parse_rows(sheet: pd.DataFrame, month: str) -> ParseResult:
    """
    Validates the data rows of an import sheet for ``month``.

    Each data row is checked for a readable date inside the month, the record
    business rules and a date not already seen earlier in the file. The first
    problem found is reported against the row's spreadsheet row number.

    Args:
        sheet (pd.DataFrame): Output of ``read_sheet``.
        month (str): The selected 'YYYY-MM' month.

    Returns:
        ParseResult: The valid records and the row errors.
    """
    year, month_number = parse_month(month)
    result = ParseResult(month=month)
    seen_dates = set()

    # Row 0 is the header
    for index, row in sheet.iloc[1:].iterrows():
        cells = list(row.values) + [None] * (len(IMPORT_COLUMN_FIELDS) + 1 - len(row.values))
        if _is_blank(cells[0]):
            continue

        result.total_rows += 1
        row_number = int(index) + 1

        date = parse_cell_date(cells[0])
        if date is None:
            result.errors.append({"row": row_number, "reason": "Invalid date format. Use DD/MM/YYYY"})
            continue
        if (date.year, date.month) != (year, month_number):
            result.errors.append({"row": row_number, "reason": f"Date does not match selected month ({month})"})
            continue

        record = {"date": date}
        for position, field_name in enumerate(IMPORT_COLUMN_FIELDS, start=1):
            cell = cells[position]
            record[field_name] = _to_int(cell) if field_name in RAW_INT_FIELDS else _to_float(cell)

        problems = check_business_rules(record)
        if problems:
            result.errors.append({"row": row_number, "reason": problems[0][1]})
            continue

        if date in seen_dates:
            result.errors.append({"row": row_number, "reason": "Duplicate date in file"})
            continue
        seen_dates.add(date)

        result.records.append(record)

    logger.info(f"Parsed import for {month}: {len(result.records)} valid of {result.total_rows} rows")
    return result


def parse_workbook(source, month: str, filename: str = "") -> ParseResult:
    """Reads and validates an uploaded import file."""
    parse_month(month)
    return parse_rows(read_sheet(source, filename), month)


def build_template(month: str = None) -> bytes:
    """
    Builds the import template workbook.

    Args:
        month (str, optional): 'YYYY-MM'; when given the template has one zero
            row per day of that month, otherwise two sample rows.

    Returns:
        bytes: The .xlsx file content.
    """
    if month:
        first_day, last_day = month_bounds(month)
        rows = [
            [day.strftime(IMPORT_DATE_FORMAT)] + [0] * len(IMPORT_COLUMN_FIELDS)
            for day in pd.date_range(first_day, last_day, freq="D")
        ]
    else:
        rows = [list(row) for row in TEMPLATE_SAMPLE_ROWS]

    template_df = pd.DataFrame(rows, columns=TEMPLATE_HEADERS)

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        template_df.to_excel(writer, sheet_name=TEMPLATE_SHEET_NAME, index=False)
        worksheet = writer.sheets[TEMPLATE_SHEET_NAME]
        for position, width in enumerate(TEMPLATE_COLUMN_WIDTHS, start=1):
            worksheet.column_dimensions[get_column_letter(position)].width = width
    return buffer.getvalue()


def template_filename(month: str = None) -> str:
    return f"import_template_{month or 'sample'}.xlsx"


class ImportManager:
    """
    Runs previews, imports and undo, holding the snapshot of the last import.

    Only the most recent import can be undone; a new import replaces the
    snapshot and a successful undo clears it. The snapshot lives in process
    memory.
    """

    def __init__(self):
        self.snapshot = None
        self._lock = threading.Lock()

    def preview(self, store, month: str, source, filename: str = "") -> dict:
        """
        Dry run: validates the file and counts what an import would replace.
        """
        result = parse_workbook(source, month, filename)
        first_day, last_day = month_bounds(month)

        return {
            "selectedMonth": month,
            "totalRowsInFile": result.total_rows,
            "validRows": len(result.records),
            "invalidRows": len(result.errors),
            "existingRecordsToDelete": store.count_records(first_day, last_day),
            "errors": result.errors,
        }

    def confirm(self, store, month: str, source, filename: str = "") -> dict:
        """
        Replaces the month's records with the valid rows of the file.

        The existing records are backed up, deleted and replaced in one
        transaction; the backup is then kept as the undo snapshot.

        Raises:
            BulkImportError: If the file holds no valid rows for the month.
        """
        result = parse_workbook(source, month, filename)
        if not result.records:
            raise BulkImportError(f"No valid rows to import for {month}")

        first_day, last_day = month_bounds(month)
        with self._lock:
            backup, imported_ids = store.replace_records(first_day, last_day, result.records)
            self.snapshot = ImportSnapshot(
                month=month,
                records=backup,
                imported_ids=imported_ids,
                timestamp=datetime.datetime.now().isoformat(timespec="seconds"),
            )

        logger.info(f"Imported {len(imported_ids)} records for {month}, replaced {len(backup)}")
        return {
            "month": month,
            "recordsDeleted": len(backup),
            "recordsImported": len(imported_ids),
            "skipped": result.total_rows - len(result.records),
        }

    def undo(self, store) -> dict:
        """
        Reverts the most recent import.

        Raises:
            UndoUnavailableError: If there is no import to undo.
        """
        with self._lock:
            if self.snapshot is None:
                raise UndoUnavailableError(
                    "No import to undo. Undo is only available for the most recent import.")

            snapshot = self.snapshot
            store.restore_records(snapshot.imported_ids, snapshot.records)
            self.snapshot = None

        logger.info(f"Undid import for {snapshot.month}")
        return {
            "month": snapshot.month,
            "recordsRestored": len(snapshot.records),
            "recordsRemoved": len(snapshot.imported_ids),
        }

    def undo_status(self) -> dict:
        snapshot = self.snapshot
        return {
            "available": snapshot is not None,
            "month": snapshot.month if snapshot else None,
            "timestamp": snapshot.timestamp if snapshot else None,
        }
