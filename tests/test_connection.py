#!/usr/bin/env python3
"""
数据库连接与连接工厂测试（驱动的 connect 均被替换，不需要数据库）
"""

import unittest
from unittest.mock import MagicMock, patch

import psycopg2
import pymysql
from psycopg2.extensions import adapt

from core.config import DatabaseConfig
from core.database_factory import DatabaseConnectionFactory
from core.dialect import POSTGRESQL
from core.exceptions import ConnectionFailedError, DatabaseNotExistsError
from core.mysql_connection import MySQLConnection
from core.postgresql_connection import PostgreSQLConnection, register_json_as_text

MYSQL_CONFIG = DatabaseConfig('mysql', 'localhost', 3306, 'shop', 'root', 'pw')
PG_CONFIG = DatabaseConfig('pgsql', 'localhost', 5432, 'app', 'postgres', 'pw')


def _driver_connection(rows=(), description=None):
    cursor = MagicMock()
    cursor.fetchall.return_value = list(rows)
    cursor.fetchone.return_value = rows[0] if rows else None
    cursor.description = description
    cursor.rowcount = len(rows)
    connection = MagicMock()
    connection.cursor.return_value.__enter__.return_value = cursor
    return connection, cursor


class TestMySQLConnection(unittest.TestCase):
    """MySQL连接测试"""

    @patch('core.mysql_connection.pymysql.connect')
    def test_connect(self, mock_connect):
        mock_connect.return_value = MagicMock()

        connection = MySQLConnection(MYSQL_CONFIG).connect()

        self.assertTrue(connection.connected)
        kwargs = mock_connect.call_args.kwargs
        self.assertEqual(kwargs['database'], 'shop')
        self.assertTrue(kwargs['autocommit'])
        self.assertEqual(kwargs['charset'], 'utf8mb4')

    @patch('core.mysql_connection.pymysql.connect')
    def test_unknown_database(self, mock_connect):
        mock_connect.side_effect = pymysql.err.OperationalError(1049, "Unknown database 'shop'")

        with self.assertRaises(DatabaseNotExistsError) as ctx:
            MySQLConnection(MYSQL_CONFIG).connect()
        self.assertEqual(ctx.exception.database, 'shop')

    @patch('core.mysql_connection.pymysql.connect')
    def test_other_failures(self, mock_connect):
        mock_connect.side_effect = pymysql.err.OperationalError(2003, "Can't connect to MySQL server")

        with self.assertRaises(ConnectionFailedError):
            MySQLConnection(MYSQL_CONFIG).connect()

    def test_not_exists_detection(self):
        self.assertTrue(MySQLConnection.is_database_not_exists_error(pymysql.err.OperationalError(1049, "x")))
        self.assertTrue(MySQLConnection.is_database_not_exists_error(RuntimeError("Unknown database 'x'")))
        self.assertFalse(MySQLConnection.is_database_not_exists_error(RuntimeError("Access denied")))

    @patch('core.mysql_connection.pymysql.connect')
    def test_create_database_connects_without_database(self, mock_connect):
        server, cursor = _driver_connection()
        mock_connect.return_value = server

        MySQLConnection(MYSQL_CONFIG).create_database()

        self.assertIsNone(mock_connect.call_args.kwargs['database'])
        cursor.execute.assert_called_once_with("CREATE DATABASE `shop`")
        server.close.assert_called_once()

    def test_query_helpers(self):
        connection = MySQLConnection(MYSQL_CONFIG)
        connection._connection, cursor = _driver_connection(rows=[(5,)], description=[('id',), ('name',)])

        self.assertEqual(connection.query("SELECT 1"), [(5,)])
        self.assertEqual(connection.query_scalar("SELECT COUNT(*)"), 5)
        self.assertEqual(connection.get_column_names("SELECT * FROM `t` LIMIT 0"), ['id', 'name'])
        self.assertEqual(connection.execute("DELETE FROM t", (1,)), 1)
        cursor.execute.assert_called_with("DELETE FROM t", (1,))

    def test_query_scalar_default(self):
        connection = MySQLConnection(MYSQL_CONFIG)
        connection._connection, _ = _driver_connection(rows=[(None,)])
        self.assertEqual(connection.query_scalar("SELECT SUM(x)", default=0), 0)

    def test_query_without_connection(self):
        with self.assertRaises(ConnectionFailedError):
            MySQLConnection(MYSQL_CONFIG).query("SELECT 1")

    def test_close(self):
        connection = MySQLConnection(MYSQL_CONFIG)
        driver, _ = _driver_connection()
        connection._connection = driver
        with connection:
            pass
        driver.close.assert_called_once()
        self.assertFalse(connection.connected)


class TestPostgreSQLConnection(unittest.TestCase):
    """PostgreSQL连接测试"""

    @patch('core.postgresql_connection.psycopg2.connect')
    def test_ssl_fallback(self, mock_connect):
        driver = MagicMock()
        mock_connect.side_effect = [psycopg2.OperationalError("server does not support SSL"), driver]

        connection = PostgreSQLConnection(PG_CONFIG).connect()

        self.assertEqual(connection.ssl_mode, 'prefer')
        self.assertTrue(driver.autocommit)
        modes = [c.kwargs['sslmode'] for c in mock_connect.call_args_list]
        self.assertEqual(modes, ['require', 'prefer'])

    @patch('core.postgresql_connection.psycopg2.connect')
    def test_database_not_exists_stops_fallback(self, mock_connect):
        mock_connect.side_effect = psycopg2.OperationalError('FATAL:  database "app" does not exist')

        with self.assertRaises(DatabaseNotExistsError):
            PostgreSQLConnection(PG_CONFIG).connect()
        self.assertEqual(mock_connect.call_count, 1)

    @patch('core.postgresql_connection.psycopg2.connect')
    def test_all_modes_fail(self, mock_connect):
        mock_connect.side_effect = psycopg2.OperationalError("password authentication failed")

        with self.assertRaises(ConnectionFailedError) as ctx:
            PostgreSQLConnection(PG_CONFIG).connect()
        self.assertEqual(mock_connect.call_count, 3)
        self.assertIn('password authentication failed', str(ctx.exception))

    @patch('core.postgresql_connection.psycopg2.connect')
    def test_create_database_uses_postgres_database(self, mock_connect):
        server, cursor = _driver_connection()
        mock_connect.return_value = server

        PostgreSQLConnection(PG_CONFIG).create_database()

        self.assertEqual(mock_connect.call_args.kwargs['dbname'], 'postgres')
        cursor.execute.assert_called_once_with('CREATE DATABASE "app"')
        server.close.assert_called_once()

    @patch('core.postgresql_connection.register_default_jsonb')
    @patch('core.postgresql_connection.register_default_json')
    def test_json_values_pass_through_as_text(self, register_json, register_jsonb):
        register_json_as_text()

        for register in (register_json, register_jsonb):
            loads = register.call_args.kwargs['loads']
            for raw in ('{"a": 1}', '[1, 2]', '"hello"'):
                value = loads(raw)
                self.assertEqual(value, raw)
                quoted = adapt(POSTGRESQL.bind_params([value])['p1']).getquoted().decode()
                self.assertEqual(quoted, f"'{raw}'")


class TestDatabaseConnectionFactory(unittest.TestCase):
    """连接工厂测试"""

    def test_create_connection(self):
        self.assertIsInstance(DatabaseConnectionFactory.create_connection(MYSQL_CONFIG), MySQLConnection)
        self.assertIsInstance(DatabaseConnectionFactory.create_connection(PG_CONFIG), PostgreSQLConnection)
        with self.assertRaises(ValueError):
            DatabaseConnectionFactory.create_connection(DatabaseConfig('oracle', database='x'))

    def test_validate_config(self):
        result = DatabaseConnectionFactory.validate_config(MYSQL_CONFIG)
        self.assertTrue(result['valid'])
        self.assertEqual(result['engine'], 'mysql')

        result = DatabaseConnectionFactory.validate_config(DatabaseConfig('mysql', database=''))
        self.assertFalse(result['valid'])

        result = DatabaseConnectionFactory.validate_config(DatabaseConfig('sqlite', database='x'))
        self.assertFalse(result['valid'])


if __name__ == '__main__':
    unittest.main()
