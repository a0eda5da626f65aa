"""
主控制器模块

整合所有功能模块，按固定的六个阶段完成一次同引擎数据库迁移
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from core.config import MigrationConfig
from core.data_transfer import DataTransferer, TransferStats
from core.database_factory import DatabaseConnectionFactory
from core.dialect import get_dialect
from core.exceptions import MigrationError, RowCountMismatchError, TransferError
from core.preflight import PreflightResult, PreflightValidator
from core.prompt import Prompter
from core.reporter import ConsoleReporter
from core.schema_applier import SchemaApplier
from core.schema_extractor import TableSchema, get_extractor

TOTAL_STAGES = 6

STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'
STATUS_ABORTED = 'aborted'
STATUS_CANCELLED = 'cancelled'


@dataclass
class StageResult:
    """阶段执行结果"""
    name: str
    status: str = "pending"  # pending, completed, skipped, failed
    duration: float = 0.0
    message: str = ""


@dataclass
class MigrationReport:
    """迁移结果汇总"""
    status: str = "pending"  # pending, completed, failed, aborted, cancelled
    tables: int = 0
    total_rows: int = 0
    duration: float = 0.0
    stage_results: List[StageResult] = field(default_factory=list)
    transfer_stats: List[TransferStats] = field(default_factory=list)
    error_message: str = ""
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_ABORTED, STATUS_CANCELLED)


class _StageSkipped(Exception):
    """阶段无事可做时抛出，携带跳过原因"""


class DatabaseMigrator:
    """数据库迁移器主控制器"""

    def __init__(self, config: MigrationConfig, reporter: Optional[ConsoleReporter] = None,
                 prompter: Optional[Prompter] = None, connection_factory=None):
        """
        初始化迁移器

        Args:
            config: 迁移配置
            reporter: 输出报告器
            prompter: 交互确认器
            connection_factory: 连接工厂，默认为 DatabaseConnectionFactory
        """
        self.config = config
        self.reporter = reporter or ConsoleReporter()
        self.prompter = prompter or Prompter(auto_confirm=config.auto_confirm)
        self.connection_factory = connection_factory or DatabaseConnectionFactory

        self.dialect = get_dialect(config.source.engine)
        self.extractor = get_extractor(config.source.engine)
        self.transferer = DataTransferer(self.dialect, batch_size=config.batch_size)

        self.source = None
        self.destination = None
        self.applier = None
        self.tables: List[TableSchema] = []

        # 回调函数
        self.progress_callback = None
        self.error_callback = None
        self.completion_callback = None

        self.logger = logging.getLogger(__name__)

    def enable_monitoring(self,
                          progress_callback: Optional[Callable] = None,
                          error_callback: Optional[Callable] = None,
                          completion_callback: Optional[Callable] = None):
        """
        启用监控回调

        Args:
            progress_callback: 进度回调函数，参数为进度字典
            error_callback: 错误回调函数，参数为错误信息
            completion_callback: 完成回调函数，参数为 MigrationReport
        """
        self.progress_callback = progress_callback
        self.error_callback = error_callback
        self.completion_callback = completion_callback

    def run(self) -> MigrationReport:
        """
        执行完整迁移流程

        Returns:
            迁移结果汇总；失败时 status 为 failed 并带错误信息
        """
        dry_run = self.config.dry_run
        report = MigrationReport(dry_run=dry_run)
        start_time = time.time()

        if dry_run:
            self.reporter.info("")
            self.reporter.dry_run("演练模式：只读取源库，不会对目标库做任何修改")

        self.logger.info(f"开始迁移: {self.config.source.display_url()} -> "
                         f"{self.config.destination.display_url()} (dry_run={dry_run})")

        preflight = PreflightValidator(self.config, self.reporter, self.prompter,
                                       connection_factory=self.connection_factory).run()
        try:
            if not self._accept_preflight(preflight, report):
                return report

            self.source = preflight.source_connection
            self.destination = preflight.destination_connection
            if self.destination is not None:
                self.applier = SchemaApplier(self.destination, self.dialect)

            if not dry_run and not self.prompter.confirm("Proceed with migration?"):
                report.status = STATUS_CANCELLED
                self.reporter.info("迁移已取消")
                self.logger.info("用户取消迁移")
                return report

            self._run_stages(report)
            report.duration = time.time() - start_time
            report.status = STATUS_COMPLETED
            self.reporter.summary(report.tables, report.total_rows, report.duration, dry_run=dry_run)
            self.logger.info(f"迁移完成: {report.tables} 张表, {report.total_rows} 行, 耗时 {report.duration:.2f}秒")
            if self.completion_callback:
                self.completion_callback(report)
        except MigrationError as e:
            self._record_failure(report, str(e))
        except Exception as e:
            self.logger.exception("迁移过程发生未预期的异常")
            self._record_failure(report, f"迁移异常: {str(e)}")
        finally:
            report.duration = time.time() - start_time
            preflight.close_connections()
            self.source = None
            self.destination = None

        return report

    def _accept_preflight(self, preflight: PreflightResult, report: MigrationReport) -> bool:
        if preflight.aborted:
            report.status = STATUS_ABORTED
            self.reporter.info("迁移已中止")
            return False
        if not preflight.passed:
            report.status = STATUS_FAILED
            report.error_message = preflight.error_message
            if self.error_callback:
                self.error_callback(f"迁移前检查失败: {preflight.error_message}")
            return False
        return True

    def _record_failure(self, report: MigrationReport, message: str):
        report.status = STATUS_FAILED
        report.error_message = message
        self.reporter.error(f"迁移失败: {message}")
        self.logger.error(f"迁移失败: {message}")
        if self.error_callback:
            self.error_callback(message)

    def _run_stages(self, report: MigrationReport):
        stages = [
            ("Migrating schema", self._migrate_schema),
            ("Migrating data", self._migrate_data),
            ("Creating indexes & constraints", self._create_indexes_and_constraints),
            ("Creating views", self._create_views),
            ("Migrating sequences", self._migrate_sequences),
            ("Finalizing", self._finalize),
        ]
        for number, (description, handler) in enumerate(stages, 1):
            stage = StageResult(name=description)
            report.stage_results.append(stage)
            self.reporter.phase(number, TOTAL_STAGES, description)
            self._update_progress({'stage': number, 'total_stages': TOTAL_STAGES, 'description': description})

            stage_start = time.time()
            try:
                handler(report)
            except _StageSkipped as skipped:
                stage.status = "skipped"
                stage.message = str(skipped)
                stage.duration = time.time() - stage_start
                self.reporter.phase_skipped(stage.message)
                continue
            except Exception as e:
                stage.status = "failed"
                stage.message = str(e)
                stage.duration = time.time() - stage_start
                self.reporter.phase_failed(e)
                raise

            stage.status = "completed"
            stage.duration = time.time() - stage_start
            self.reporter.phase_done(stage.duration)
            self.logger.info(f"阶段 [{number}/{TOTAL_STAGES}] {description} 完成, 耗时 {stage.duration:.2f}秒")

    def _migrate_schema(self, report: MigrationReport):
        """阶段1：抽取表结构并在目标库建表"""
        self.tables = self.extractor.extract_tables(self.source, self.config.source.database)
        report.tables = len(self.tables)

        for table in self.tables:
            if self.config.dry_run:
                self.reporter.dry_run(f"将创建表 {table.name}")
                continue
            self.applier.create_table(table)
            self.reporter.info(f"  ✓ {table.name}")

    def _migrate_data(self, report: MigrationReport):
        """阶段2：逐表复制数据，期间关闭外键检查"""
        dry_run = self.config.dry_run
        if not dry_run:
            self.transferer.disable_foreign_key_checks(self.destination)

        for table in self.tables:
            total_rows = self._count_rows(self.source, table.name, 'data')

            def on_progress(rows_copied, table_name=table.name, total=total_rows):
                self.reporter.table_progress(table_name, rows_copied, total)
                self._update_progress({'table': table_name, 'rows_copied': rows_copied, 'total_rows': total})

            stats = self.transferer.transfer_table(self.source, self.destination, table,
                                                   dry_run=dry_run, progress_callback=on_progress)
            report.transfer_stats.append(stats)
            report.total_rows += stats.rows_copied
            if dry_run:
                self.reporter.dry_run(f"将复制 {table.name}: {stats.rows_copied:,} 行")
            else:
                self.reporter.table_done(table.name, stats.rows_copied, stats.duration)

    def _create_indexes_and_constraints(self, report: MigrationReport):
        """阶段3：先建全部二级索引，再建全部外键"""
        indexes = [index for table in self.tables for index in table.indexes]
        foreign_keys = [foreign_key for table in self.tables for foreign_key in table.foreign_keys]

        if self.config.dry_run:
            self.reporter.dry_run(f"将创建 {len(indexes)} 个索引, {len(foreign_keys)} 个外键")
            return

        for index in indexes:
            self.applier.create_index(index)
        for foreign_key in foreign_keys:
            self.applier.create_foreign_key(foreign_key)
        self.reporter.info(f"  已创建 {len(indexes)} 个索引, {len(foreign_keys)} 个外键")

    def _create_views(self, report: MigrationReport):
        """阶段4：按依赖顺序建视图"""
        views = self.extractor.extract_views(self.source, self.config.source.database)
        if not views:
            raise _StageSkipped("没有视图")

        for view in views:
            if self.config.dry_run:
                self.reporter.dry_run(f"将创建视图 {view.name}")
                continue
            self.applier.create_view(view)
            self.reporter.info(f"  ✓ {view.name}")

    def _migrate_sequences(self, report: MigrationReport):
        """阶段5：创建序列并同步当前值"""
        if not self.dialect.supports_sequences:
            raise _StageSkipped(f"{self.dialect.name} 不使用序列")
        if self.config.dry_run:
            raise _StageSkipped("演练模式")

        sequences = self.extractor.extract_sequences(self.source, self.config.source.database)
        if not sequences:
            raise _StageSkipped("没有序列")

        for sequence in sequences:
            self.applier.create_sequence(sequence)
            self.applier.set_sequence_value(sequence)
            self.reporter.info(f"  ✓ {sequence.name} = {sequence.current_value}")

    def _finalize(self, report: MigrationReport):
        """阶段6：恢复外键检查并逐表核对行数"""
        if self.config.dry_run:
            raise _StageSkipped("演练模式")

        self.transferer.enable_foreign_key_checks(self.destination)

        for table in self.tables:
            source_rows = self._count_rows(self.source, table.name, 'finalize')
            destination_rows = self._count_rows(self.destination, table.name, 'finalize')
            if source_rows != destination_rows:
                raise RowCountMismatchError(table.name, source_rows, destination_rows)
        self.reporter.info(f"  已核对 {len(self.tables)} 张表的行数")

    def _count_rows(self, connection, table_name: str, stage: str) -> int:
        try:
            return self.transferer.estimate_rows(connection, table_name)
        except Exception as e:
            raise TransferError(f"统计行数失败: {str(e)}", stage=stage, object_name=table_name) from e

    def _update_progress(self, progress: Dict):
        """更新进度"""
        if self.progress_callback:
            self.progress_callback(progress)
