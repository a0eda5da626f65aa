"""
数据库分析模块

连接单个数据库并输出服务器信息、库概况、表明细、索引、外键和连接统计
"""

import logging

from .config import DatabaseConfig
from .dialect import ENGINE_MYSQL, ENGINE_POSTGRESQL, normalize_engine
from .exceptions import MigrationError
from .reporter import format_bytes, format_number, format_uptime, truncate

_MYSQL_VARIABLE_LABELS = {
    'version_comment': 'Server Type',
    'max_connections': 'Max Connections',
    'wait_timeout': 'Wait Timeout',
    'character_set_server': 'Character Set',
    'collation_server': 'Collation',
    'innodb_buffer_pool_size': 'InnoDB Buffer Pool',
}

_PG_SETTINGS = [
    ('max_connections', 'Max Connections'),
    ('shared_buffers', 'Shared Buffers'),
    ('work_mem', 'Work Memory'),
    ('server_encoding', 'Encoding'),
    ('timezone', 'Timezone'),
]


class DatabaseAnalyzer:
    """数据库分析器"""

    def __init__(self, connection, db_config: DatabaseConfig, reporter):
        self.connection = connection
        self.db_config = db_config
        self.reporter = reporter
        self.logger = logging.getLogger(__name__)

    def analyze(self):
        """
        输出分析结果

        Raises:
            MigrationError: 必需的统计查询失败
        """
        engine = normalize_engine(self.db_config.engine)
        self.reporter.header(f"数据库分析: {self.db_config.display_url()}")
        try:
            if engine == ENGINE_MYSQL:
                self._analyze_mysql()
            elif engine == ENGINE_POSTGRESQL:
                self._analyze_postgresql()
            else:
                raise ValueError(f"不支持的数据库引擎: {self.db_config.engine}")
        except (MigrationError, ValueError):
            raise
        except Exception as e:
            self.logger.error(f"数据库分析失败: {str(e)}")
            raise MigrationError(f"数据库分析失败: {str(e)}", stage='analyze') from e

    def _optional_scalar(self, sql: str):
        """可选的统计项，查询失败时跳过"""
        try:
            return self.connection.query_scalar(sql)
        except Exception as e:
            self.logger.debug(f"可选查询失败，已跳过: {str(e)}")
            return None

    def _analyze_mysql(self):
        conn = self.connection
        database = self.db_config.database
        r = self.reporter

        r.section("🖥️  Server Information")
        r.field("Version", conn.query_scalar("SELECT VERSION()", default=''))
        variables = conn.query(
            "SHOW VARIABLES WHERE Variable_name IN ("
            "'version_comment', 'max_connections', 'wait_timeout', "
            "'character_set_server', 'collation_server', 'innodb_buffer_pool_size')"
        )
        for name, value in variables:
            if name == 'wait_timeout':
                value = f"{value}s"
            elif name == 'innodb_buffer_pool_size' and str(value).isdigit():
                value = format_bytes(float(value))
            r.field(_MYSQL_VARIABLE_LABELS.get(name, name), value)

        uptime = self._optional_scalar(
            "SELECT VARIABLE_VALUE FROM performance_schema.global_status WHERE VARIABLE_NAME = 'Uptime'")
        if uptime is not None:
            r.field("Uptime", format_uptime(int(uptime)))

        table_count = conn.query_scalar("""
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
        """, (database,), default=0)
        total_size = conn.query_scalar("""
            SELECT SUM(data_length + index_length)
            FROM information_schema.tables
            WHERE table_schema = %s
        """, (database,), default=0)

        r.section("📊 Database Summary")
        r.field("Tables", table_count, width=8)
        r.field("Size", format_bytes(float(total_size or 0)), width=8)

        r.section("📋 Table Details")
        widths = [35, 12, 12, 12]
        r.table_row(["TABLE", "ENGINE", "EST. ROWS", "SIZE"], widths)
        r.rule(75)
        total_rows = 0
        rows = conn.query("""
            SELECT table_name, engine, table_rows, data_length + index_length
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """, (database,))
        for table_name, engine, table_rows, size in rows:
            table_rows = int(table_rows or 0)
            total_rows += table_rows
            r.table_row([truncate(table_name, 35), engine or '', format_number(table_rows),
                         format_bytes(float(size or 0))], widths)
        r.info("")
        r.field("Total Estimated Rows", format_number(total_rows))

        r.section("🔑 Indexes")
        widths = [25, 30, 30, 6]
        r.table_row(["TABLE", "INDEX", "COLUMNS", "UNIQUE"], widths)
        r.rule(95)
        rows = conn.query("""
            SELECT table_name, index_name,
                   GROUP_CONCAT(column_name ORDER BY seq_in_index SEPARATOR ','),
                   non_unique
            FROM information_schema.statistics
            WHERE table_schema = %s
            GROUP BY table_name, index_name, non_unique
            ORDER BY table_name, index_name
        """, (database,))
        for table_name, index_name, columns, non_unique in rows:
            r.table_row([truncate(table_name, 25), truncate(index_name, 30), truncate(columns or '', 30),
                         "No" if int(non_unique) == 1 else "Yes"], widths)

        self._print_foreign_keys(conn.query("""
            SELECT table_name, column_name, constraint_name, referenced_table_name, referenced_column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = %s AND referenced_table_name IS NOT NULL
            ORDER BY table_name, constraint_name
        """, (database,)))

        r.section("📡 Connection Statistics")
        stats = conn.query(
            "SHOW STATUS WHERE Variable_name IN "
            "('Threads_connected', 'Max_used_connections', 'Connections', 'Aborted_connects')"
        )
        for name, value in stats:
            r.field(name, value, width=25)

    def _analyze_postgresql(self):
        conn = self.connection
        r = self.reporter

        r.section("🖥️  Server Information")
        r.field("Version", truncate(str(conn.query_scalar("SELECT version()", default='')), 60))
        for setting, label in _PG_SETTINGS:
            value = self._optional_scalar(f"SHOW {setting}")
            if value is not None:
                r.field(label, value)
        uptime = self._optional_scalar("SELECT EXTRACT(EPOCH FROM (now() - pg_postmaster_start_time()))")
        if uptime is not None:
            r.field("Uptime", format_uptime(int(uptime)))

        table_count = conn.query_scalar("""
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
        """, default=0)
        total_size = conn.query_scalar("SELECT pg_database_size(current_database())", default=0)

        r.section("📊 Database Summary")
        r.field("Tables", table_count, width=8)
        r.field("Size", format_bytes(float(total_size)), width=8)

        r.section("📋 Table Details")
        widths = [35, 12, 12]
        r.table_row(["TABLE", "ROW COUNT", "SIZE"], widths)
        r.rule(63)
        total_rows = 0
        rows = conn.query("""
            SELECT
                t.table_name,
                COALESCE(s.n_live_tup, 0),
                pg_total_relation_size(quote_ident(t.table_name)::regclass)
            FROM information_schema.tables t
            LEFT JOIN pg_stat_user_tables s ON t.table_name = s.relname AND s.schemaname = 'public'
            WHERE t.table_schema = 'public' AND t.table_type = 'BASE TABLE'
            ORDER BY t.table_name
        """)
        for table_name, row_count, size in rows:
            total_rows += int(row_count)
            r.table_row([truncate(table_name, 35), format_number(row_count), format_bytes(float(size))], widths)
        r.info("")
        r.field("Total Rows", format_number(total_rows))

        r.section("🔑 Indexes")
        widths = [30, 40, 6]
        r.table_row(["TABLE", "INDEX", "UNIQUE"], widths)
        r.rule(78)
        rows = conn.query("""
            SELECT tablename, indexname, indexdef LIKE 'CREATE UNIQUE%'
            FROM pg_indexes
            WHERE schemaname = 'public'
            ORDER BY tablename, indexname
        """)
        for table_name, index_name, is_unique in rows:
            r.table_row([truncate(table_name, 30), truncate(index_name, 40), "Yes" if is_unique else "No"], widths)

        self._print_foreign_keys(conn.query("""
            SELECT
                tc.table_name,
                kcu.column_name,
                tc.constraint_name,
                ccu.table_name,
                ccu.column_name
            FROM information_schema.table_constraints AS tc
            JOIN information_schema.key_column_usage AS kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage AS ccu
                ON ccu.constraint_name = tc.constraint_name
                AND ccu.table_schema = tc.table_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
                AND tc.table_schema = 'public'
            ORDER BY tc.table_name, tc.constraint_name
        """))

        r.section("📡 Connection Statistics")
        active = conn.query_scalar("SELECT COUNT(*) FROM pg_stat_activity WHERE state = 'active'", default=0)
        idle = conn.query_scalar("SELECT COUNT(*) FROM pg_stat_activity WHERE state = 'idle'", default=0)
        total = conn.query_scalar("SELECT COUNT(*) FROM pg_stat_activity", default=0)
        r.field("Active Connections", active)
        r.field("Idle Connections", idle)
        r.field("Total Connections", total)

    def _print_foreign_keys(self, rows):
        r = self.reporter
        r.section("🔗 Foreign Keys")
        widths = [30, 35, 20, 20]
        r.table_row(["TABLE.COLUMN", "CONSTRAINT", "REFERENCES", "COLUMN"], widths)
        r.rule(95)
        if not rows:
            r.info("No foreign keys found")
            return
        for table_name, column_name, constraint_name, ref_table, ref_column in rows:
            r.table_row([truncate(f"{table_name}.{column_name}", 30), truncate(constraint_name, 35),
                         truncate(ref_table or '', 20), ref_column or ''], widths)
