#!/usr/bin/env python3
"""
迁移主控制器测试

迁移前检查被替换为固定结果，源库/目标库均为模拟连接，不需要数据库
"""

import io
import unittest
from unittest.mock import MagicMock, patch

from core.config import DatabaseConfig, MigrationConfig
from core.exceptions import ExtractionError
from core.preflight import PreflightResult
from core.reporter import ConsoleReporter
from core.schema_extractor import ForeignKeyDef, IndexDef, SequenceDef, TableSchema
from main_controller import DatabaseMigrator, MigrationReport


def _config(engine='mysql', dry_run=False):
    return MigrationConfig(
        source=DatabaseConfig(engine=engine, database='src'),
        destination=DatabaseConfig(engine=engine, database='dst'),
        dry_run=dry_run,
    )


def _users_table():
    return TableSchema(
        name='users',
        create_statement='CREATE TABLE `users` (`id` int NOT NULL, PRIMARY KEY (`id`))',
        primary_key=['id'],
        indexes=[IndexDef('idx_org', 'users', ['org_id'], False, 'CREATE INDEX `idx_org` ON `users` (`org_id`)')],
        foreign_keys=[ForeignKeyDef('fk_org', 'users', ['org_id'], 'orgs', ['id'], 'CASCADE', 'RESTRICT',
                                    'ALTER TABLE `users` ADD CONSTRAINT `fk_org` FOREIGN KEY (`org_id`) '
                                    'REFERENCES `orgs` (`id`) ON DELETE CASCADE')],
    )


class TestDatabaseMigrator(unittest.TestCase):
    """六阶段迁移流程测试"""

    def setUp(self):
        self.source = MagicMock()
        self.source.get_column_names.return_value = ['id']
        self.source.query_scalar.return_value = 2
        self.source.query.side_effect = [[(1,), (2,)]]

        self.destination = MagicMock()
        self.destination.query_scalar.return_value = 2

        self.output = io.StringIO()
        self.prompter = MagicMock()
        self.prompter.confirm.return_value = True

        patcher = patch('main_controller.PreflightValidator')
        self.validator_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self._preflight(PreflightResult(source_connection=self.source,
                                        destination_connection=self.destination))

    def _preflight(self, result):
        self.validator_cls.return_value.run.return_value = result

    def _migrator(self, config, tables=None, views=None, sequences=None):
        migrator = DatabaseMigrator(config, reporter=ConsoleReporter(stream=self.output),
                                    prompter=self.prompter, connection_factory=MagicMock())
        migrator.extractor = MagicMock()
        migrator.extractor.extract_tables.return_value = [_users_table()] if tables is None else tables
        migrator.extractor.extract_views.return_value = views or []
        migrator.extractor.extract_sequences.return_value = sequences or []
        return migrator

    def _destination_sql(self):
        return [c.args[0] for c in self.destination.execute.call_args_list]

    def test_live_migration(self):
        report = self._migrator(_config()).run()

        self.assertIsInstance(report, MigrationReport)
        self.assertEqual(report.status, 'completed')
        self.assertTrue(report.success)
        self.assertEqual(report.tables, 1)
        self.assertEqual(report.total_rows, 2)
        self.assertEqual(len(report.stage_results), 6)
        self.prompter.confirm.assert_called_once_with("Proceed with migration?")

        executed = self._destination_sql()
        self.assertTrue(executed[0].startswith('CREATE TABLE `users`'))
        self.assertEqual(executed[1], 'SET FOREIGN_KEY_CHECKS = 0')
        self.assertTrue(executed[2].startswith('INSERT INTO `users`'))
        self.assertEqual(executed[3], 'CREATE INDEX `idx_org` ON `users` (`org_id`)')
        self.assertTrue(executed[4].startswith('ALTER TABLE `users` ADD CONSTRAINT `fk_org`'))
        self.assertEqual(executed[5], 'SET FOREIGN_KEY_CHECKS = 1')
        self.assertEqual(len(executed), 6)

    def test_foreign_key_toggles_fire_once(self):
        tables = [_users_table(), TableSchema(name='orgs', create_statement='CREATE TABLE `orgs` (`id` int)')]
        self.source.query.side_effect = [[(1,), (2,)], [(1,), (2,)]]

        self._migrator(_config(), tables=tables).run()

        executed = self._destination_sql()
        self.assertEqual(executed.count('SET FOREIGN_KEY_CHECKS = 0'), 1)
        self.assertEqual(executed.count('SET FOREIGN_KEY_CHECKS = 1'), 1)
        first_insert = next(i for i, sql in enumerate(executed) if sql.startswith('INSERT'))
        self.assertLess(executed.index('SET FOREIGN_KEY_CHECKS = 0'), first_insert)

    def test_dry_run_makes_no_destination_writes(self):
        report = self._migrator(_config(dry_run=True)).run()

        self.assertEqual(report.status, 'completed')
        self.assertTrue(report.dry_run)
        self.assertEqual(report.total_rows, 2)
        self.destination.execute.assert_not_called()
        self.source.query.assert_not_called()
        self.prompter.confirm.assert_not_called()
        self.assertIn('[DRY RUN]', self.output.getvalue())

    def test_dry_run_without_destination_connection(self):
        self._preflight(PreflightResult(source_connection=self.source, destination_connection=None))

        report = self._migrator(_config(dry_run=True)).run()

        self.assertEqual(report.status, 'completed')

    def test_row_count_mismatch_fails(self):
        self.destination.query_scalar.return_value = 1
        errors = []
        migrator = self._migrator(_config())
        migrator.enable_monitoring(error_callback=errors.append)

        report = migrator.run()

        self.assertEqual(report.status, 'failed')
        self.assertFalse(report.success)
        self.assertIn('users', report.error_message)
        self.assertEqual(report.stage_results[-1].status, 'failed')
        self.assertEqual(len(errors), 1)

    def test_aborted_preflight_runs_no_stage(self):
        self._preflight(PreflightResult(aborted=True))
        migrator = self._migrator(_config())

        report = migrator.run()

        self.assertEqual(report.status, 'aborted')
        self.assertTrue(report.success)
        self.assertEqual(report.stage_results, [])
        migrator.extractor.extract_tables.assert_not_called()

    def test_failed_preflight(self):
        self._preflight(PreflightResult(passed=False, error_message="engine mismatch"))

        report = self._migrator(_config()).run()

        self.assertEqual(report.status, 'failed')
        self.assertEqual(report.error_message, "engine mismatch")

    def test_declined_proceed_cancels(self):
        self.prompter.confirm.return_value = False
        migrator = self._migrator(_config())

        report = migrator.run()

        self.assertEqual(report.status, 'cancelled')
        migrator.extractor.extract_tables.assert_not_called()
        self.destination.execute.assert_not_called()
        self.source.close.assert_called_once()
        self.destination.close.assert_called_once()

    def test_connections_closed_after_success(self):
        self._migrator(_config()).run()
        self.source.close.assert_called_once()
        self.destination.close.assert_called_once()

    def test_stage_error_stops_run(self):
        migrator = self._migrator(_config())
        migrator.extractor.extract_tables.side_effect = ExtractionError("boom", stage='schema', object_name='users')

        report = migrator.run()

        self.assertEqual(report.status, 'failed')
        self.assertEqual(len(report.stage_results), 1)
        self.assertEqual(report.stage_results[0].status, 'failed')
        self.assertIn('[schema] users: boom', report.error_message)
        self.destination.execute.assert_not_called()

    def test_source_count_failure_names_data_stage(self):
        self.source.query_scalar.side_effect = RuntimeError("table is locked")

        report = self._failed_run()

        self.assertTrue(report.error_message.startswith('[data] users:'))
        self.assertIn('table is locked', report.error_message)
        self.assertEqual(report.stage_results[1].status, 'failed')

    def test_foreign_key_disable_failure_names_data_stage(self):
        self.destination.execute.side_effect = [None, RuntimeError("permission denied")]

        report = self._failed_run()

        self.assertTrue(report.error_message.startswith('[data]'))
        self.assertNotIn('迁移异常', report.error_message)
        self.assertEqual(report.stage_results[1].status, 'failed')

    def test_destination_count_failure_names_finalize_stage(self):
        self.destination.query_scalar.side_effect = RuntimeError('relation "users" does not exist')

        report = self._failed_run()

        self.assertTrue(report.error_message.startswith('[finalize] users:'))
        self.assertEqual(report.stage_results[-1].status, 'failed')

    def _failed_run(self):
        report = self._migrator(_config()).run()
        self.assertEqual(report.status, 'failed')
        return report

    def test_views_stage_skipped_without_views(self):
        report = self._migrator(_config()).run()
        self.assertEqual(report.stage_results[3].status, 'skipped')
        self.assertEqual(report.stage_results[4].status, 'skipped')

    def test_postgresql_sequences(self):
        sequences = [SequenceDef('users_id_seq', 'CREATE SEQUENCE IF NOT EXISTS "users_id_seq"', 42)]
        table = TableSchema(name='users', create_statement='CREATE TABLE "users" ("id" SERIAL)')

        report = self._migrator(_config('pgsql'), tables=[table], sequences=sequences).run()

        self.assertEqual(report.status, 'completed')
        executed = self._destination_sql()
        self.assertIn('SET session_replication_role = replica', executed)
        self.assertIn('CREATE SEQUENCE IF NOT EXISTS "users_id_seq"', executed)
        self.assertIn("SELECT setval('\"users_id_seq\"', 42, true)", executed)
        self.assertEqual(executed[-1], 'SET session_replication_role = DEFAULT')

    def test_monitoring_callbacks(self):
        progress = []
        completed = []
        migrator = self._migrator(_config())
        migrator.enable_monitoring(progress.append, None, completed.append)

        report = migrator.run()

        self.assertEqual(completed, [report])
        stages = [item['stage'] for item in progress if 'stage' in item]
        self.assertEqual(stages, [1, 2, 3, 4, 5, 6])
        self.assertIn({'table': 'users', 'rows_copied': 2, 'total_rows': 2}, progress)


if __name__ == '__main__':
    unittest.main()
