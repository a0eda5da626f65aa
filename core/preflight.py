"""
迁移前检查模块

依次完成：连接源库、采集源库信息、校验引擎一致、连接目标库（可选建库）、
比较主版本号、处理非空目标库、输出源库概况。
每一步要么通过，要么致命失败，要么需要用户确认（拒绝即为"中止"，区别于"失败"）。
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List

from .config import MigrationConfig
from .database_factory import DatabaseConnectionFactory
from .dialect import ENGINE_MYSQL, ENGINE_POSTGRESQL, get_dialect, normalize_engine
from .exceptions import DatabaseNotExistsError, EngineMismatchError, MigrationError
from .reporter import format_bytes

STATUS_PASSED = 'passed'
STATUS_FAILED = 'failed'
STATUS_ABORTED = 'aborted'

_VERSION_RE = re.compile(r'(\d+)\.(\d+)')


@dataclass
class DatabaseInfo:
    """数据库概况"""
    version: str = ""
    major_version: int = 0
    table_count: int = 0
    view_count: int = 0
    total_size: int = 0
    tables: List[str] = field(default_factory=list)


@dataclass
class CheckResult:
    """单项检查结果"""
    name: str
    passed: bool
    message: str = ""
    warning: bool = False


@dataclass
class PreflightResult:
    """迁移前检查结果，包含两侧的活动连接"""
    source_connection: object = None
    destination_connection: object = None
    source_info: DatabaseInfo = field(default_factory=DatabaseInfo)
    destination_info: DatabaseInfo = field(default_factory=DatabaseInfo)
    checks: List[CheckResult] = field(default_factory=list)
    passed: bool = True
    aborted: bool = False
    error_message: str = ""

    @property
    def status(self) -> str:
        if self.aborted:
            return STATUS_ABORTED
        return STATUS_PASSED if self.passed else STATUS_FAILED

    def close_connections(self):
        for connection in (self.source_connection, self.destination_connection):
            if connection is not None:
                connection.close()
        self.source_connection = None
        self.destination_connection = None


def extract_major_version(version: str) -> int:
    """
    从版本字符串中提取主版本号

    支持 "8.0.35"、"PostgreSQL 16.2 on x86_64"、"5.7.44-log" 等格式，取第一个 major.minor
    """
    match = _VERSION_RE.search(version or '')
    return int(match.group(1)) if match else 0


def get_database_info(connection, engine: str, database: str) -> DatabaseInfo:
    """
    采集数据库概况

    Args:
        connection: 数据库连接
        engine: 引擎名称
        database: 数据库名

    Returns:
        数据库概况
    """
    engine = normalize_engine(engine)
    info = DatabaseInfo()

    if engine == ENGINE_MYSQL:
        info.version = str(connection.query_scalar("SELECT VERSION()", default=''))
        row = connection.query_one("""
            SELECT COUNT(*), COALESCE(SUM(data_length + index_length), 0)
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
        """, (database,))
        info.table_count = int(row[0]) if row else 0
        info.total_size = int(row[1] or 0) if row else 0
        info.view_count = int(connection.query_scalar("""
            SELECT COUNT(*)
            FROM information_schema.views
            WHERE table_schema = %s
        """, (database,), default=0))
        rows = connection.query("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """, (database,))
    elif engine == ENGINE_POSTGRESQL:
        info.version = str(connection.query_scalar("SELECT version()", default=''))
        info.table_count = int(connection.query_scalar("""
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
        """, default=0))
        info.total_size = int(connection.query_scalar(
            "SELECT pg_database_size(current_database())", default=0))
        info.view_count = int(connection.query_scalar("""
            SELECT COUNT(*)
            FROM information_schema.views
            WHERE table_schema = 'public'
        """, default=0))
        rows = connection.query("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """)
    else:
        raise ValueError(f"不支持的数据库引擎: {engine}")

    info.major_version = extract_major_version(info.version)
    info.tables = [row[0] for row in rows]
    return info


def wipe_database(connection, engine: str):
    """
    删除数据库中的全部表、视图和序列

    MySQL 在删除期间关闭外键检查；PostgreSQL 使用 CASCADE 删除
    """
    engine = normalize_engine(engine)
    dialect = get_dialect(engine)
    q = dialect.quote_identifier

    if engine == ENGINE_MYSQL:
        connection.execute(dialect.disable_fk_checks_sql())
        tables = connection.query("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE'
        """)
        for (table,) in tables:
            connection.execute(f"DROP TABLE IF EXISTS {q(table)}")
        views = connection.query("""
            SELECT table_name
            FROM information_schema.views
            WHERE table_schema = DATABASE()
        """)
        for (view,) in views:
            connection.execute(f"DROP VIEW IF EXISTS {q(view)}")
        connection.execute(dialect.enable_fk_checks_sql())
    else:
        tables = connection.query("SELECT tablename FROM pg_tables WHERE schemaname = 'public'")
        for (table,) in tables:
            connection.execute(f"DROP TABLE IF EXISTS {q(table)} CASCADE")
        views = connection.query("SELECT viewname FROM pg_views WHERE schemaname = 'public'")
        for (view,) in views:
            connection.execute(f"DROP VIEW IF EXISTS {q(view)} CASCADE")
        sequences = connection.query("SELECT sequencename FROM pg_sequences WHERE schemaname = 'public'")
        for (sequence,) in sequences:
            connection.execute(f"DROP SEQUENCE IF EXISTS {q(sequence)} CASCADE")


class PreflightValidator:
    """迁移前检查器"""

    def __init__(self, config: MigrationConfig, reporter, prompter, connection_factory=None):
        """
        初始化检查器

        Args:
            config: 迁移配置
            reporter: 输出报告器
            prompter: 交互确认器（只由检查器决定何时询问）
            connection_factory: 连接工厂，默认为 DatabaseConnectionFactory
        """
        self.config = config
        self.reporter = reporter
        self.prompter = prompter
        self.connection_factory = connection_factory or DatabaseConnectionFactory
        self.logger = logging.getLogger(__name__)

    def run(self) -> PreflightResult:
        """
        执行全部检查

        Returns:
            检查结果；失败或中止时已关闭本次打开的连接
        """
        result = PreflightResult()
        self.reporter.header("迁移前检查")

        try:
            self._run_checks(result)
        except MigrationError as e:
            self._fail(result, e.stage or 'preflight', str(e))
        except Exception as e:
            self.logger.exception("迁移前检查异常")
            self._fail(result, 'preflight', str(e))

        if result.status != STATUS_PASSED:
            result.close_connections()
        return result

    def _fail(self, result: PreflightResult, name: str, message: str):
        result.passed = False
        result.error_message = message
        result.checks.append(CheckResult(name=name, passed=False, message=message))
        self.reporter.error(message)
        self.logger.error(f"迁移前检查失败: {message}")

    def _abort(self, result: PreflightResult, reason: str):
        result.aborted = True
        self.logger.info(f"迁移前检查被用户中止: {reason}")

    def _run_checks(self, result: PreflightResult):
        source_config = self.config.source
        destination_config = self.config.destination

        # 1. 连接源库
        try:
            result.source_connection = self.connection_factory.connect(source_config)
        except MigrationError as e:
            self._fail(result, "Source connection", f"源库连接失败: {e.message}")
            return
        result.checks.append(CheckResult("Source connection", True, f"已连接 {source_config.display_url()}"))
        self.reporter.success(f"源库连接成功{self._ssl_note(result.source_connection)}")

        # 2. 采集源库信息
        try:
            result.source_info = get_database_info(
                result.source_connection, source_config.engine, source_config.database)
        except Exception as e:
            self._fail(result, "Source info", f"获取源库信息失败: {str(e)}")
            return

        # 3. 引擎必须一致，在连接目标库和任何写操作之前判断
        source_engine = normalize_engine(source_config.engine)
        destination_engine = normalize_engine(destination_config.engine)
        if source_engine != destination_engine:
            error = EngineMismatchError(source_engine, destination_engine)
            result.checks.append(CheckResult("Engine matching", False, error.message))
            result.passed = False
            result.error_message = error.message
            self.reporter.error(f"引擎不一致: {source_engine} -> {destination_engine}")
            return
        result.checks.append(CheckResult("Engine matching", True, f"{source_engine} -> {destination_engine}"))
        self.reporter.success(f"数据库引擎一致 ({source_engine} -> {destination_engine})")

        # 4. 连接目标库，必要时建库
        if not self._connect_destination(result):
            return
        if result.destination_connection is None:
            # dry-run 且目标库不存在：其余目标库检查无从进行
            self._report_source_summary(result)
            return

        # 5. 采集目标库信息并比较主版本号
        try:
            result.destination_info = get_database_info(
                result.destination_connection, destination_config.engine, destination_config.database)
        except Exception as e:
            self._fail(result, "Destination info", f"获取目标库信息失败: {str(e)}")
            return

        source_info = result.source_info
        destination_info = result.destination_info
        if source_info.major_version != destination_info.major_version:
            self.reporter.warning(f"版本不一致: {source_info.version} -> {destination_info.version}")
            self.reporter.info("   本工具无法识别主版本之间的不兼容变更，迁移会继续尝试，请在完成后核对结果。")
            if not self.prompter.confirm("Continue anyway?"):
                self._abort(result, "版本不一致")
                return
            result.checks.append(CheckResult(
                "Version check", True,
                f"主版本不一致: {source_info.version} -> {destination_info.version} (用户已确认)",
                warning=True))
        else:
            self.reporter.success(f"版本: {source_info.version} -> {destination_info.version}")
            result.checks.append(CheckResult("Version check", True,
                                             f"{source_info.version} -> {destination_info.version}"))

        # 6. 目标库非空时需要确认清空
        if destination_info.table_count > 0:
            self.reporter.warning(f"目标库不为空 ({destination_info.table_count} 张表)")
            if not self.prompter.confirm("Drop all objects in destination and continue?"):
                self._abort(result, "拒绝清空目标库")
                return
            if self.config.dry_run:
                self.reporter.dry_run("将清空目标库")
            else:
                try:
                    wipe_database(result.destination_connection, destination_config.engine)
                except Exception as e:
                    self._fail(result, "Destination wipe", f"清空目标库失败: {str(e)}")
                    return
                self.reporter.success("目标库已清空")
            result.checks.append(CheckResult("Destination empty", True, "目标库已清空", warning=True))
        else:
            self.reporter.success("目标库为空")
            result.checks.append(CheckResult("Destination empty", True, "目标库为空"))

        # 7. 源库概况
        self._report_source_summary(result)

    def _connect_destination(self, result: PreflightResult) -> bool:
        """
        连接目标库；目标库不存在时询问是否创建

        Returns:
            是否可以继续后续检查
        """
        destination_config = self.config.destination
        try:
            result.destination_connection = self.connection_factory.connect(destination_config)
        except DatabaseNotExistsError:
            self.reporter.warning(f'目标服务器上不存在数据库 "{destination_config.database}"')
            if self.config.dry_run:
                self.reporter.dry_run(f'将创建数据库 "{destination_config.database}"')
                result.checks.append(CheckResult(
                    "Destination connection", True, f'将创建数据库 "{destination_config.database}"'))
                result.destination_info = DatabaseInfo(
                    version=result.source_info.version,
                    major_version=result.source_info.major_version,
                )
                self.reporter.success("目标库为空（将被创建）")
                return True

            if not self.prompter.confirm("Create it?"):
                self._abort(result, "拒绝创建目标库")
                return False

            try:
                self.connection_factory.create_database(destination_config)
            except Exception as e:
                self._fail(result, "Destination create", f"创建数据库失败: {str(e)}")
                return False
            self.reporter.success(f'已创建数据库 "{destination_config.database}"')

            try:
                result.destination_connection = self.connection_factory.connect(destination_config)
            except MigrationError as e:
                self._fail(result, "Destination connection", f"创建数据库后连接目标库失败: {e.message}")
                return False
        except MigrationError as e:
            self._fail(result, "Destination connection", f"目标库连接失败: {e.message}")
            return False

        result.checks.append(CheckResult(
            "Destination connection", True, f"已连接 {destination_config.display_url()}"))
        self.reporter.success(f"目标库连接成功{self._ssl_note(result.destination_connection)}")
        return True

    def _report_source_summary(self, result: PreflightResult):
        info = result.source_info
        self.reporter.success(
            f"源库大小: {format_bytes(info.total_size)} ({info.table_count} 张表, {info.view_count} 个视图)")

    @staticmethod
    def _ssl_note(connection) -> str:
        ssl_mode = getattr(connection, 'ssl_mode', '')
        if ssl_mode and ssl_mode != 'require':
            return f" (SSL: {ssl_mode})"
        return ""
