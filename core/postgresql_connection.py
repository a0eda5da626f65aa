"""
PostgreSQL数据库连接模块

负责管理与PostgreSQL数据库的连接，按固定顺序协商SSL模式，
识别"数据库不存在"错误以及创建数据库
"""

import logging
import re

import psycopg2
from psycopg2.extras import register_default_json, register_default_jsonb

from .config import DatabaseConfig
from .connection import DatabaseConnection
from .dialect import ENGINE_POSTGRESQL, POSTGRESQL
from .exceptions import ConnectionFailedError, DatabaseNotExistsError

# 依次尝试的SSL模式: 严格 -> 优先 -> 关闭
SSL_MODES = ('require', 'prefer', 'disable')

# SQLSTATE 3D000: invalid_catalog_name
INVALID_CATALOG_NAME = '3D000'

_DB_NOT_EXISTS_RE = re.compile(r'database ".*" does not exist', re.IGNORECASE)


def register_json_as_text():
    """json/jsonb 列按原始文本读出，写回目标库时原样作为字符串传入"""
    register_default_json(loads=lambda s: s)
    register_default_jsonb(loads=lambda s: s)


register_json_as_text()


class PostgreSQLConnection(DatabaseConnection):
    """PostgreSQL数据库连接管理器"""

    engine = ENGINE_POSTGRESQL

    def __init__(self, db_config: DatabaseConfig, ssl_modes=SSL_MODES):
        super().__init__(db_config)
        self.ssl_modes = tuple(ssl_modes)
        self.logger = logging.getLogger(__name__)

    def _connect_with_ssl_fallback(self, database: str):
        """
        按SSL模式顺序尝试连接，返回第一个成功的连接

        Returns:
            (连接对象, 使用的SSL模式)
        """
        last_error = None
        for ssl_mode in self.ssl_modes:
            try:
                connection = psycopg2.connect(
                    host=self.host,
                    port=int(self.port),
                    user=self.user,
                    password=self.password,
                    dbname=database,
                    sslmode=ssl_mode,
                    connect_timeout=30
                )
            except psycopg2.Error as e:
                last_error = e
                # 数据库不存在的错误不会因为换SSL模式而消失
                if self.is_database_not_exists_error(e):
                    raise DatabaseNotExistsError(database) from e
                self.logger.debug(f"PostgreSQL使用 sslmode={ssl_mode} 连接失败: {str(e)}")
                continue

            # CREATE DATABASE 等语句不能在事务中执行，且每条语句需各自生效
            connection.autocommit = True
            return connection, ssl_mode

        raise ConnectionFailedError(f"所有SSL模式均连接失败: {last_error}") from last_error

    def _create_connection(self):
        connection, self.ssl_mode = self._connect_with_ssl_fallback(self.database)
        self.logger.info(f"PostgreSQL连接成功 (sslmode={self.ssl_mode})")
        return connection

    @staticmethod
    def is_database_not_exists_error(error: Exception) -> bool:
        """优先使用SQLSTATE判断，驱动未提供时再匹配错误信息"""
        if getattr(error, 'pgcode', None) == INVALID_CATALOG_NAME:
            return True
        message = str(error)
        return INVALID_CATALOG_NAME in message or bool(_DB_NOT_EXISTS_RE.search(message))

    def create_database(self) -> None:
        """
        连接系统库 postgres 并创建目标数据库

        Raises:
            ConnectionFailedError: 无法连接到服务器
            psycopg2.Error: 建库失败
        """
        connection, _ = self._connect_with_ssl_fallback('postgres')
        try:
            with connection.cursor() as cursor:
                cursor.execute(f"CREATE DATABASE {POSTGRESQL.quote_identifier(self.database)}")
            self.logger.info(f"PostgreSQL数据库 {self.database} 创建成功")
        finally:
            connection.close()
