#!/usr/bin/env python3
"""
控制台输出与格式化测试
"""

import io
import unittest

from core.reporter import (ConsoleReporter, format_bytes, format_duration, format_number, format_uptime,
                           truncate)


class TestFormatting(unittest.TestCase):
    """格式化函数测试"""

    def test_format_bytes(self):
        self.assertEqual(format_bytes(0), '0 B')
        self.assertEqual(format_bytes(512), '512 B')
        self.assertEqual(format_bytes(1536), '1.50 KB')
        self.assertEqual(format_bytes(1024 * 1024), '1.00 MB')
        self.assertEqual(format_bytes(3 * 1024 ** 3), '3.00 GB')

    def test_format_number(self):
        self.assertEqual(format_number(0), '0')
        self.assertEqual(format_number(1234567), '1,234,567')

    def test_truncate(self):
        self.assertEqual(truncate('short', 10), 'short')
        self.assertEqual(truncate('abcdefghij', 8), 'abcde...')
        self.assertEqual(len(truncate('x' * 100, 35)), 35)

    def test_format_duration(self):
        self.assertEqual(format_duration(0.25), '250ms')
        self.assertEqual(format_duration(2.34), '2.3s')
        self.assertEqual(format_duration(252), '4m 12s')
        self.assertEqual(format_duration(3900), '1h 5m')

    def test_format_uptime(self):
        self.assertEqual(format_uptime(2 * 86400 + 5 * 3600 + 30 * 60), '2d 5h 30m')
        self.assertEqual(format_uptime(3700), '1h 1m')
        self.assertEqual(format_uptime(59), '0m')


class TestConsoleReporter(unittest.TestCase):
    """报告器输出测试"""

    def setUp(self):
        self.stream = io.StringIO()
        self.reporter = ConsoleReporter(stream=self.stream)

    def test_phase_output(self):
        self.reporter.phase(2, 6, "Migrating data")
        self.reporter.phase_done(0.5)
        self.reporter.phase_skipped("没有视图")
        output = self.stream.getvalue()
        self.assertIn('[2/6] Migrating data', output)
        self.assertIn('完成 (500ms)', output)
        self.assertIn('跳过 (没有视图)', output)

    def test_phase_failed_includes_error(self):
        self.reporter.phase_failed("[data] users: 写入批次失败")
        self.assertIn('[data] users: 写入批次失败', self.stream.getvalue())

    def test_dry_run_prefix(self):
        self.reporter.dry_run("将创建表 users")
        self.assertEqual(self.stream.getvalue(), "  [DRY RUN] 将创建表 users\n")

    def test_table_progress_and_done(self):
        self.reporter.table_progress('users', 500, 1000)
        self.reporter.table_done('users', 1000, 2.0)
        output = self.stream.getvalue()
        self.assertIn('users: 500 / 1,000 (50.0%)', output)
        self.assertIn('✅ users: 1,000 行 (2.0s)', output)

    def test_table_progress_with_zero_total(self):
        self.reporter.table_progress('empty', 0, 0)
        self.assertIn('(100.0%)', self.stream.getvalue())

    def test_summary(self):
        self.reporter.summary(3, 12345, 65, dry_run=True)
        output = self.stream.getvalue()
        self.assertIn('迁移演练完成', output)
        self.assertIn('12,345', output)
        self.assertIn('1m 5s', output)

    def test_table_row_alignment(self):
        self.reporter.table_row(['TABLE', 'ROWS'], [8, 6])
        self.assertEqual(self.stream.getvalue(), "  TABLE    ROWS\n")


if __name__ == '__main__':
    unittest.main()
