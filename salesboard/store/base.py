import datetime
import logging
from abc import ABC, abstractmethod

import pandas as pd

from salesboard.constants import RAW_FIELDS, RAW_FLOAT_FIELDS
from salesboard.validator import parse_record_date

logger = logging.getLogger(__name__)

RECORD_COLUMNS = ["id", "date"] + RAW_FIELDS
REPORT_TEXT_FIELDS = [
    "sale_analysis",
    "sale_recommendation",
    "prod_analysis",
    "prod_recommendation",
    "live_analysis",
    "live_recommendation",
    "summary_content",
]
REPORT_COLUMNS = ["id", "client_name", "start_date", "end_date"] + REPORT_TEXT_FIELDS + ["version", "created_at"]

SCHEMA_TEMPLATE = [
    """
    CREATE TABLE IF NOT EXISTS daily_records (
        id {primary_key},
        date {date_type} NOT NULL UNIQUE,
        total_sale {float_type} NOT NULL DEFAULT 0,
        total_sale_gmv {float_type} NOT NULL DEFAULT 0,
        gmv_sale_live {float_type} NOT NULL DEFAULT 0,
        gmv_ads_spend {float_type} NOT NULL DEFAULT 0,
        gmv_live_ads_spend {float_type} NOT NULL DEFAULT 0,
        ttam_spend_ads {float_type} NOT NULL DEFAULT 0,
        ttam_impressions INTEGER NOT NULL DEFAULT 0,
        visitor INTEGER NOT NULL DEFAULT 0,
        customers INTEGER NOT NULL DEFAULT 0,
        created_at {timestamp_type} NOT NULL,
        updated_at {timestamp_type} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id {primary_key},
        username TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL,
        created_at {timestamp_type} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analysis_reports (
        id {primary_key},
        client_name TEXT NOT NULL,
        start_date {date_type} NOT NULL,
        end_date {date_type} NOT NULL,
        sale_analysis TEXT,
        sale_recommendation TEXT,
        prod_analysis TEXT,
        prod_recommendation TEXT,
        live_analysis TEXT,
        live_recommendation TEXT,
        summary_content TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        created_at {timestamp_type} NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_reports_range ON analysis_reports (start_date, end_date, version)",
]


class RecordNotFoundError(LookupError):
    """Raised when a record addressed by id does not exist."""


def _now() -> str:
    return datetime.datetime.now().isoformat(timespec="seconds")


def _iso(value) -> str:
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return value


class BaseStore(ABC):
    """
    Abstract base class for the salesboard database.

    Subclasses supply the DB-API connection and the dialect details; every
    query is written once here with ``?`` placeholders and adapted by
    ``_adapt_sql`` for backends that use a different paramstyle.
    """

    name = "database"
    column_types = {}

    def __init__(self, config: dict):
        """
        Initialize the store with its configuration.

        Args:
            config (dict): Backend-specific connection parameters.
        """
        self.config = config
        self.connection = None

    @abstractmethod
    def connect(self):
        """
        Open the database connection and store it in ``self.connection``.
        """
        pass

    @abstractmethod
    def disconnect(self):
        """
        Close the database connection.
        """
        pass

    @abstractmethod
    def _insert(self, cursor, query: str, params: tuple) -> int:
        """
        Execute an INSERT and return the new row id.
        """
        pass

    @property
    @abstractmethod
    def database_error(self):
        """The exception class raised by the backend driver."""
        pass

    def _adapt_sql(self, query: str) -> str:
        return query

    def __enter__(self):
        """
        Context management entry point.
        """
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Context management exit point. Ensures disconnection.
        """
        self.disconnect()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def _run(self, work, write=False):
        """
        Run ``work(cursor)`` and return its result.

        Writes are committed when ``work`` returns and rolled back when it
        raises, so everything done inside one call is a single transaction.

        Raises:
            RuntimeError: If the driver reports an error.
        """
        if not self.connection:
            self.connect()

        cursor = self.connection.cursor()
        try:
            result = work(cursor)
            if write:
                self.connection.commit()
            return result
        except self.database_error as e:
            logger.error(f"Error executing query on {self.name}: {e}")
            self.connection.rollback()
            raise RuntimeError(f"Could not execute query on {self.name}: {e}")
        except Exception:
            self.connection.rollback()
            raise
        finally:
            cursor.close()

    def _execute(self, cursor, query: str, params: tuple = ()):
        cursor.execute(self._adapt_sql(query), params)
        return cursor

    def _fetch_dicts(self, cursor, query: str, params: tuple = ()) -> list:
        self._execute(cursor, query, params)
        columns = [description[0] for description in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    @staticmethod
    def _record_from_row(row: dict) -> dict:
        record = dict(row)
        record["date"] = parse_record_date(row["date"])
        for field in RAW_FLOAT_FIELDS:
            record[field] = float(record[field] or 0)
        for key in ("created_at", "updated_at"):
            if key in record:
                record[key] = _iso(record[key])
        return record

    @staticmethod
    def _report_from_row(row: dict) -> dict:
        report = dict(row)
        report["start_date"] = parse_record_date(row["start_date"])
        report["end_date"] = parse_record_date(row["end_date"])
        report["created_at"] = _iso(row["created_at"])
        return report

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def initialize_schema(self):
        """Create the tables when they do not exist yet."""
        def work(cursor):
            for statement in SCHEMA_TEMPLATE:
                self._execute(cursor, statement.format(**self.column_types))

        self._run(work, write=True)
        logger.info(f"Schema ready on {self.name}")

    # ------------------------------------------------------------------
    # Daily records
    # ------------------------------------------------------------------

    def fetch_records(self, start=None, end=None) -> pd.DataFrame:
        """
        Fetch daily records whose date falls in ``[start, end]``.

        Args:
            start (datetime.date, optional): First day; unbounded when omitted.
            end (datetime.date, optional): Last day (inclusive); unbounded when omitted.

        Returns:
            pd.DataFrame: One row per record ordered by date, with a datetime 'date' column.
        """
        clauses, params = [], []
        if start is not None:
            clauses.append("date >= ?")
            params.append(_iso(start))
        if end is not None:
            clauses.append("date <= ?")
            params.append(_iso(end))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"SELECT {', '.join(RECORD_COLUMNS)} FROM daily_records{where} ORDER BY date"

        rows = self._run(lambda cursor: self._fetch_dicts(cursor, query, tuple(params)))
        df = pd.DataFrame([self._record_from_row(row) for row in rows], columns=RECORD_COLUMNS)
        df["date"] = pd.to_datetime(df["date"])
        logger.debug(f"Fetched {len(df)} records from {self.name}")
        return df

    def fetch_record(self, record_id: int):
        query = "SELECT * FROM daily_records WHERE id = ?"
        rows = self._run(lambda cursor: self._fetch_dicts(cursor, query, (record_id,)))
        return self._record_from_row(rows[0]) if rows else None

    def find_record_by_date(self, date):
        query = "SELECT * FROM daily_records WHERE date = ?"
        rows = self._run(lambda cursor: self._fetch_dicts(cursor, query, (_iso(date),)))
        return self._record_from_row(rows[0]) if rows else None

    def count_records(self, start, end) -> int:
        query = "SELECT COUNT(*) FROM daily_records WHERE date >= ? AND date <= ?"

        def work(cursor):
            self._execute(cursor, query, (_iso(start), _iso(end)))
            return cursor.fetchone()[0]

        return int(self._run(work))

    def _insert_record(self, cursor, record: dict, timestamp: str) -> int:
        columns = ["date"] + RAW_FIELDS + ["created_at", "updated_at"]
        values = [_iso(record["date"])] + [record.get(field, 0) or 0 for field in RAW_FIELDS] + [timestamp, timestamp]
        query = (f"INSERT INTO daily_records ({', '.join(columns)}) "
                 f"VALUES ({', '.join('?' for _ in columns)})")
        return self._insert(cursor, query, tuple(values))

    def _update_record_values(self, cursor, record_id: int, values: dict, timestamp: str) -> int:
        assignments = ", ".join(f"{field} = ?" for field in RAW_FIELDS)
        query = f"UPDATE daily_records SET {assignments}, updated_at = ? WHERE id = ?"
        params = tuple(values.get(field, 0) or 0 for field in RAW_FIELDS) + (timestamp, record_id)
        self._execute(cursor, query, params)
        return cursor.rowcount

    def upsert_record(self, record: dict):
        """
        Create the record for its date, or overwrite the one already stored.

        Args:
            record (dict): Validated raw fields plus ``date``.

        Returns:
            tuple: ``(stored record, mode)`` where mode is 'create' or 'update'.
        """
        timestamp = _now()

        def work(cursor):
            rows = self._fetch_dicts(cursor, "SELECT id FROM daily_records WHERE date = ?", (_iso(record["date"]),))
            if rows:
                self._update_record_values(cursor, rows[0]["id"], record, timestamp)
                return rows[0]["id"], "update"
            return self._insert_record(cursor, record, timestamp), "create"

        record_id, mode = self._run(work, write=True)
        logger.info(f"Record {record['date']} saved on {self.name} ({mode})")
        return self.fetch_record(record_id), mode

    def update_record(self, record_id: int, values: dict) -> dict:
        """
        Overwrite the raw fields of the record with ``record_id``.

        Raises:
            RecordNotFoundError: If no record has that id.
        """
        updated = self._run(lambda cursor: self._update_record_values(cursor, record_id, values, _now()), write=True)
        if not updated:
            raise RecordNotFoundError(f"Record {record_id} not found")
        return self.fetch_record(record_id)

    def replace_records(self, start, end, records: list):
        """
        Replace every record in ``[start, end]`` with ``records`` in one transaction.

        Returns:
            tuple: ``(backup, imported_ids)``; the records that were deleted and the ids of the new ones.
        """
        timestamp = _now()

        def work(cursor):
            bounds = (_iso(start), _iso(end))
            backup = self._fetch_dicts(
                cursor, "SELECT * FROM daily_records WHERE date >= ? AND date <= ? ORDER BY date", bounds)
            self._execute(cursor, "DELETE FROM daily_records WHERE date >= ? AND date <= ?", bounds)
            imported_ids = [self._insert_record(cursor, record, timestamp) for record in records]
            return [self._record_from_row(row) for row in backup], imported_ids

        backup, imported_ids = self._run(work, write=True)
        logger.info(f"Replaced {len(backup)} records with {len(imported_ids)} between {start} and {end}")
        return backup, imported_ids

    def restore_records(self, remove_ids: list, records: list) -> int:
        """
        Delete the records in ``remove_ids`` and reinsert ``records`` in one transaction.

        A record saved since on the date of one of ``records`` is replaced by it.

        Returns:
            int: The number of records reinserted.
        """
        timestamp = _now()

        def work(cursor):
            for record_id in remove_ids:
                self._execute(cursor, "DELETE FROM daily_records WHERE id = ?", (record_id,))
            for record in records:
                self._execute(cursor, "DELETE FROM daily_records WHERE date = ?", (_iso(record["date"]),))
                self._insert_record(cursor, record, timestamp)
            return len(records)

        restored = self._run(work, write=True)
        logger.info(f"Removed {len(remove_ids)} records and restored {restored} on {self.name}")
        return restored

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, username: str):
        rows = self._run(lambda cursor: self._fetch_dicts(
            cursor, "SELECT id, username, password_hash, role FROM users WHERE username = ?", (username,)))
        return rows[0] if rows else None

    def save_user(self, username: str, password_hash: str, role: str) -> dict:
        """Create the user, or reset the password and role of an existing one."""
        def work(cursor):
            rows = self._fetch_dicts(cursor, "SELECT id FROM users WHERE username = ?", (username,))
            if rows:
                self._execute(cursor, "UPDATE users SET password_hash = ?, role = ? WHERE id = ?",
                              (password_hash, role, rows[0]["id"]))
                return
            self._insert(cursor, "INSERT INTO users (username, password_hash, role, created_at) VALUES (?, ?, ?, ?)",
                         (username, password_hash, role, _now()))

        self._run(work, write=True)
        return self.get_user(username)

    # ------------------------------------------------------------------
    # Analysis reports
    # ------------------------------------------------------------------

    def save_report(self, report: dict) -> dict:
        """
        Insert a report row.

        Args:
            report (dict): ``client_name``, ``start_date``, ``end_date``, the text fields and ``version``.

        Returns:
            dict: The stored report including its id and created_at.
        """
        columns = REPORT_COLUMNS[1:]
        values = dict(report, created_at=_now())
        values["start_date"] = _iso(values["start_date"])
        values["end_date"] = _iso(values["end_date"])
        query = (f"INSERT INTO analysis_reports ({', '.join(columns)}) "
                 f"VALUES ({', '.join('?' for _ in columns)})")
        params = tuple(values.get(column) for column in columns)

        report_id = self._run(lambda cursor: self._insert(cursor, query, params), write=True)
        logger.info(f"Saved report v{values['version']} for {values['start_date']}..{values['end_date']}")
        return self._report_from_row(dict(values, id=report_id))

    def find_report(self, start, end, version: int):
        query = (f"SELECT {', '.join(REPORT_COLUMNS)} FROM analysis_reports "
                 "WHERE start_date = ? AND end_date = ? AND version = ? ORDER BY id DESC")
        rows = self._run(lambda cursor: self._fetch_dicts(cursor, query, (_iso(start), _iso(end), version)))
        return self._report_from_row(rows[0]) if rows else None

    def list_reports(self) -> list:
        """All reports, newest first."""
        query = f"SELECT {', '.join(REPORT_COLUMNS)} FROM analysis_reports ORDER BY created_at DESC, id DESC"
        rows = self._run(lambda cursor: self._fetch_dicts(cursor, query))
        return [self._report_from_row(row) for row in rows]

    def latest_report_version(self, start, end) -> int:
        """Highest stored version for the range, 0 when none exists."""
        query = "SELECT MAX(version) FROM analysis_reports WHERE start_date = ? AND end_date = ?"

        def work(cursor):
            self._execute(cursor, query, (_iso(start), _iso(end)))
            return cursor.fetchone()[0]

        return int(self._run(work) or 0)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_tables(self) -> dict:
        """Every row of every table, for backups of non-file databases."""
        def work(cursor):
            return {table: self._fetch_dicts(cursor, f"SELECT * FROM {table} ORDER BY id")
                    for table in ("daily_records", "users", "analysis_reports")}

        tables = self._run(work)
        return {table: [{key: _iso(value) for key, value in row.items()} for row in rows]
                for table, rows in tables.items()}
