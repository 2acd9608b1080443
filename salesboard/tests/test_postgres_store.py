import datetime
import unittest
from unittest.mock import patch, MagicMock

import psycopg2  # To mock its exceptions and objects

from salesboard.store.base import RECORD_COLUMNS
from salesboard.store.postgres import PostgresStore

MOCK_RECORD_ROW = (1, datetime.date(2026, 1, 5), 100.0, 80.0, 50.0, 10.0, 5.0, 5.0, 1000, 40, 4)


class TestPostgresStore(unittest.TestCase):

    def setUp(self):
        self.config = {
            "host": "localhost",
            "port": 5432,
            "username": "testuser",
            "password": "testpassword",
            "database": "testdb"
        }

    def _mock_connection(self, mock_connect):
        mock_cursor_obj = MagicMock()
        mock_connection_obj = MagicMock()
        mock_connection_obj.cursor.return_value = mock_cursor_obj
        mock_connect.return_value = mock_connection_obj
        return mock_connection_obj, mock_cursor_obj

    @patch('psycopg2.connect')
    def test_connect_success(self, mock_connect):
        mock_connection_obj = MagicMock()
        mock_connect.return_value = mock_connection_obj

        store = PostgresStore(self.config)
        store.connect()

        mock_connect.assert_called_once_with(
            host="localhost",
            port=5432,
            user="testuser",
            password="testpassword",
            dbname="testdb"
        )
        self.assertEqual(store.connection, mock_connection_obj)
        store.disconnect()

    @patch('psycopg2.connect')
    def test_connect_with_dsn(self, mock_connect):
        store = PostgresStore({"dsn": "postgresql://user:pw@db:5432/salesboard"})
        store.connect()
        mock_connect.assert_called_once_with("postgresql://user:pw@db:5432/salesboard")

    @patch('psycopg2.connect', side_effect=psycopg2.OperationalError("Connection failed"))
    def test_connect_failure(self, mock_connect):
        store = PostgresStore(self.config)
        with self.assertRaisesRegex(ConnectionError, "Could not connect to PostgreSQL: Connection failed"):
            store.connect()
        mock_connect.assert_called_once()

    @patch('psycopg2.connect')
    def test_disconnect(self, mock_connect):
        mock_connection_obj, _ = self._mock_connection(mock_connect)

        store = PostgresStore(self.config)
        store.connect()
        store.disconnect()

        mock_connection_obj.close.assert_called_once()
        self.assertIsNone(store.connection)

    @patch('psycopg2.connect')
    def test_schema_uses_postgres_types(self, mock_connect):
        mock_connection_obj, mock_cursor_obj = self._mock_connection(mock_connect)

        with PostgresStore(self.config) as store:
            store.initialize_schema()

        statements = [call.args[0] for call in mock_cursor_obj.execute.call_args_list]
        self.assertIn("SERIAL PRIMARY KEY", statements[0])
        self.assertIn("date DATE NOT NULL UNIQUE", statements[0])
        mock_connection_obj.commit.assert_called_once()
        mock_cursor_obj.close.assert_called_once()

    @patch('psycopg2.connect')
    def test_placeholders_adapted(self, mock_connect):
        _, mock_cursor_obj = self._mock_connection(mock_connect)
        mock_cursor_obj.fetchone.return_value = (3,)

        with PostgresStore(self.config) as store:
            count = store.count_records(datetime.date(2026, 1, 1), datetime.date(2026, 1, 31))

        self.assertEqual(count, 3)
        mock_cursor_obj.execute.assert_called_once_with(
            "SELECT COUNT(*) FROM daily_records WHERE date >= %s AND date <= %s",
            ("2026-01-01", "2026-01-31"),
        )

    @patch('psycopg2.connect')
    def test_fetch_records(self, mock_connect):
        _, mock_cursor_obj = self._mock_connection(mock_connect)
        mock_cursor_obj.description = [(column,) for column in RECORD_COLUMNS]
        mock_cursor_obj.fetchall.return_value = [MOCK_RECORD_ROW]

        with PostgresStore(self.config) as store:
            df = store.fetch_records(datetime.date(2026, 1, 1), datetime.date(2026, 1, 31))

        self.assertEqual(len(df), 1)
        self.assertEqual(df.loc[0, "date"].date(), datetime.date(2026, 1, 5))
        self.assertEqual(df.loc[0, "visitor"], 40)
        query = mock_cursor_obj.execute.call_args.args[0]
        self.assertIn("WHERE date >= %s AND date <= %s ORDER BY date", query)

    @patch('psycopg2.connect')
    def test_insert_returns_id(self, mock_connect):
        _, mock_cursor_obj = self._mock_connection(mock_connect)
        mock_cursor_obj.fetchone.return_value = (7,)

        report = {
            "client_name": "Test Shop",
            "start_date": datetime.date(2026, 1, 1),
            "end_date": datetime.date(2026, 1, 31),
            "summary_content": "summary",
            "version": 1,
        }
        with PostgresStore(self.config) as store:
            saved = store.save_report(report)

        self.assertEqual(saved["id"], 7)
        query = mock_cursor_obj.execute.call_args.args[0]
        self.assertTrue(query.endswith("RETURNING id"))
        self.assertNotIn("?", query)

    @patch('psycopg2.connect')
    def test_query_failure_rolls_back(self, mock_connect):
        mock_connection_obj, mock_cursor_obj = self._mock_connection(mock_connect)
        mock_cursor_obj.execute.side_effect = psycopg2.Error("Syntax error")

        with PostgresStore(self.config) as store:
            with self.assertRaisesRegex(RuntimeError, "Could not execute query on PostgreSQL: Syntax error"):
                store.count_records(datetime.date(2026, 1, 1), datetime.date(2026, 1, 31))

        mock_connection_obj.rollback.assert_called_once()
        mock_connection_obj.commit.assert_not_called()
        mock_cursor_obj.close.assert_called_once()

    @patch('psycopg2.connect')
    def test_connects_lazily(self, mock_connect):
        _, mock_cursor_obj = self._mock_connection(mock_connect)
        mock_cursor_obj.fetchone.return_value = (None,)

        store = PostgresStore(self.config)
        self.assertEqual(store.latest_report_version(datetime.date(2026, 1, 1), datetime.date(2026, 1, 31)), 0)
        mock_connect.assert_called_once()


if __name__ == '__main__':
    unittest.main()
