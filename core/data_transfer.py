"""
数据传输模块

按固定批次大小分页读取源表，并以单条多行INSERT写入目标表
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .config import DEFAULT_BATCH_SIZE
from .dialect import Dialect
from .exceptions import TransferError
from .schema_extractor import TableSchema


@dataclass
class TransferStats:
    """单表传输统计"""
    table_name: str
    rows_copied: int = 0
    batches: int = 0
    duration: float = 0.0


class DataTransferer:
    """
    数据传输器

    单线程顺序执行：逐表传输，表内逐批读取、逐批插入。
    每个批次是一条原子语句，中途失败时目标表可能已写入部分批次，不做回滚。
    """

    def __init__(self, dialect: Dialect, batch_size: int = DEFAULT_BATCH_SIZE):
        """
        初始化数据传输器

        Args:
            dialect: 数据库方言（源库与目标库引擎相同）
            batch_size: 每批读取的行数
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size 必须大于0: {batch_size}")
        self.dialect = dialect
        self.batch_size = batch_size
        self.logger = logging.getLogger(__name__)

    def get_columns(self, connection, table_name: str) -> List[str]:
        """通过零行查询获取列名列表"""
        table = self.dialect.quote_identifier(table_name)
        return connection.get_column_names(f"SELECT * FROM {table} LIMIT 0")

    def estimate_rows(self, connection, table_name: str) -> int:
        """全表计数，仅用于进度展示和dry-run汇总，不参与传输控制"""
        table = self.dialect.quote_identifier(table_name)
        return int(connection.query_scalar(f"SELECT COUNT(*) FROM {table}", default=0))

    def build_insert_statement(self, table_name: str, columns: List[str], row_count: int) -> str:
        """
        构造多行INSERT语句

        位置风格的占位符在整个批次内从1递增到 row_count*len(columns)；
        单一风格的占位符全部相同。语句带参数执行，标识符中的 % 需要转义。
        """
        q = self.dialect.quote_identifier
        column_list = ', '.join(q(column) for column in columns)
        width = len(columns)

        value_groups = []
        for row_index in range(row_count):
            tokens = self.dialect.placeholders(width, start=row_index * width + 1)
            value_groups.append(f"({', '.join(tokens)})")

        head = f"INSERT INTO {q(table_name)} ({column_list}) VALUES ".replace('%', '%%')
        return head + ', '.join(value_groups)

    def build_select_statement(self, table: TableSchema, columns: List[str], offset: int) -> str:
        q = self.dialect.quote_identifier
        sql = f"SELECT {', '.join(q(column) for column in columns)} FROM {q(table.name)}"
        if table.primary_key:
            sql += f" ORDER BY {', '.join(q(column) for column in table.primary_key)}"
        return sql + f" LIMIT {self.batch_size} OFFSET {offset}"

    def transfer_table(self, source, destination, table: TableSchema, dry_run: bool = False,
                       progress_callback: Optional[Callable[[int], None]] = None) -> TransferStats:
        """
        传输单张表的数据

        Args:
            source: 源库连接
            destination: 目标库连接（dry-run时不会被访问）
            table: 表结构
            dry_run: 是否为演练模式
            progress_callback: 每批成功后以累计行数回调

        Returns:
            传输统计

        Raises:
            TransferError: 读取或写入失败，带表名上下文
        """
        start_time = time.time()
        stats = TransferStats(table_name=table.name)

        try:
            columns = self.get_columns(source, table.name)
            if not columns:
                self.logger.warning(f"表 {table.name} 没有可识别的列，跳过数据传输")
                stats.duration = time.time() - start_time
                return stats

            total_rows = self.estimate_rows(source, table.name)
        except Exception as e:
            raise TransferError(f"读取表信息失败: {str(e)}", stage='data', object_name=table.name) from e

        if dry_run:
            stats.rows_copied = total_rows
            stats.duration = time.time() - start_time
            return stats

        self.logger.info(f"开始传输表 {table.name}: 预计 {total_rows} 行, 批次大小 {self.batch_size}")

        offset = 0
        while True:
            try:
                rows = source.query(self.build_select_statement(table, columns, offset))
            except Exception as e:
                raise TransferError(f"读取批次失败 (offset={offset}): {str(e)}",
                                    stage='data', object_name=table.name) from e

            if not rows:
                break

            values = [value for row in rows for value in row]
            sql = self.build_insert_statement(table.name, columns, len(rows))
            try:
                destination.execute(sql, self.dialect.bind_params(values))
            except Exception as e:
                raise TransferError(f"写入批次失败 (offset={offset}, rows={len(rows)}): {str(e)}",
                                    stage='data', object_name=table.name) from e

            stats.rows_copied += len(rows)
            stats.batches += 1
            if progress_callback:
                progress_callback(stats.rows_copied)

            # 不足一批说明已到最后一页
            if len(rows) < self.batch_size:
                break
            offset += self.batch_size

        stats.duration = time.time() - start_time
        self.logger.info(f"表 {table.name} 传输完成: {stats.rows_copied} 行, {stats.batches} 批, 耗时 {stats.duration:.2f}秒")
        return stats

    def disable_foreign_key_checks(self, connection):
        try:
            connection.execute(self.dialect.disable_fk_checks_sql())
        except Exception as e:
            raise TransferError(f"关闭外键检查失败: {str(e)}", stage='data') from e
        self.logger.info("已关闭外键检查")

    def enable_foreign_key_checks(self, connection):
        try:
            connection.execute(self.dialect.enable_fk_checks_sql())
        except Exception as e:
            raise TransferError(f"恢复外键检查失败: {str(e)}", stage='finalize') from e
        self.logger.info("已恢复外键检查")
