#!/usr/bin/env python3
"""
数据库分析测试（使用模拟连接，不需要数据库）
"""

import io
import unittest
from unittest.mock import MagicMock

from core.analyzer import DatabaseAnalyzer
from core.config import DatabaseConfig
from core.exceptions import MigrationError
from core.reporter import ConsoleReporter


class TestDatabaseAnalyzer(unittest.TestCase):
    """分析输出测试"""

    def setUp(self):
        self.stream = io.StringIO()
        self.reporter = ConsoleReporter(stream=self.stream)
        self.connection = MagicMock()

    def test_mysql(self):
        def query_scalar(sql, params=None, default=None):
            if 'VERSION()' in sql:
                return '8.0.35'
            if 'performance_schema' in sql:
                raise RuntimeError("performance_schema disabled")
            if 'SUM(' in sql:
                return 16384
            return 1

        def query(sql, params=None):
            if 'SHOW VARIABLES' in sql:
                return [('max_connections', '151'), ('innodb_buffer_pool_size', '134217728'),
                        ('wait_timeout', '28800')]
            if 'SHOW STATUS' in sql:
                return [('Threads_connected', '3')]
            if 'information_schema.statistics' in sql:
                return [('users', 'PRIMARY', 'id', 0), ('users', 'idx_email', 'email', 1)]
            if 'key_column_usage' in sql:
                return []
            if 'information_schema.tables' in sql:
                return [('users', 'InnoDB', 1200, 16384)]
            return []

        self.connection.query_scalar.side_effect = query_scalar
        self.connection.query.side_effect = query

        DatabaseAnalyzer(self.connection, DatabaseConfig('mysql', database='shop'), self.reporter).analyze()

        output = self.stream.getvalue()
        self.assertIn('8.0.35', output)
        self.assertIn('128.00 MB', output)
        self.assertIn('28800s', output)
        self.assertIn('16.00 KB', output)
        self.assertIn('1,200', output)
        self.assertIn('idx_email', output)
        self.assertIn('No foreign keys found', output)
        self.assertIn('Threads_connected', output)
        self.assertNotIn('Uptime', output)

    def test_postgresql(self):
        def query_scalar(sql, params=None, default=None):
            if 'version()' in sql:
                return 'PostgreSQL 16.2 on x86_64-pc-linux-gnu'
            if sql.startswith('SHOW '):
                raise RuntimeError("permission denied")
            if 'EXTRACT(EPOCH' in sql:
                return 3700.0
            if 'pg_database_size' in sql:
                return 2048
            return 0

        def query(sql, params=None):
            if 'FOREIGN KEY' in sql:
                return [('orders', 'user_id', 'fk_orders_user', 'users', 'id')]
            if 'pg_stat_user_tables' in sql:
                return [('orders', 10, 8192), ('users', 5, 8192)]
            if 'pg_indexes' in sql:
                return [('users', 'users_pkey', True)]
            return []

        self.connection.query_scalar.side_effect = query_scalar
        self.connection.query.side_effect = query

        DatabaseAnalyzer(self.connection, DatabaseConfig('pgsql', port=5432, database='app'), self.reporter).analyze()

        output = self.stream.getvalue()
        self.assertIn('PostgreSQL 16.2', output)
        self.assertIn('1h 1m', output)
        self.assertNotIn('Shared Buffers', output)
        self.assertIn('orders.user_id', output)
        self.assertIn('fk_orders_user', output)
        self.assertIn('users_pkey', output)
        self.assertIn('Total Rows:', output)

    def test_required_query_failure(self):
        self.connection.query_scalar.return_value = '8.0.35'
        self.connection.query.side_effect = RuntimeError("access denied")

        with self.assertRaises(MigrationError) as ctx:
            DatabaseAnalyzer(self.connection, DatabaseConfig('mysql', database='shop'), self.reporter).analyze()
        self.assertEqual(ctx.exception.stage, 'analyze')

    def test_unsupported_engine(self):
        with self.assertRaises(ValueError):
            DatabaseAnalyzer(self.connection, DatabaseConfig('oracle', database='x'), self.reporter).analyze()


if __name__ == '__main__':
    unittest.main()
