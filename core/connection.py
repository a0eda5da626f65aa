"""
数据库连接基础模块

每一侧（源库/目标库）在整个迁移过程中只持有一个长连接，
所有阶段复用该连接；连接以自动提交模式工作，每条语句各自原子生效。
"""

import logging
from contextlib import contextmanager
from typing import Any, List, Optional

from .config import DatabaseConfig
from .exceptions import ConnectionFailedError, DatabaseNotExistsError


class DatabaseConnection:
    """单连接管理器基类，子类负责具体驱动的建连和错误识别"""

    engine = ''

    def __init__(self, db_config: DatabaseConfig):
        """
        初始化数据库连接（不会立即建连）

        Args:
            db_config: 数据库连接参数
        """
        self.db_config = db_config
        self.host = db_config.host
        self.port = db_config.port
        self.user = db_config.user
        self.password = db_config.password
        self.database = db_config.database

        self.ssl_mode = ''
        self.logger = logging.getLogger(__name__)
        self._connection = None

    def connect(self) -> 'DatabaseConnection':
        """
        建立连接

        Raises:
            DatabaseNotExistsError: 目标数据库不存在
            ConnectionFailedError: 其他连接失败
        """
        try:
            self._connection = self._create_connection()
        except (DatabaseNotExistsError, ConnectionFailedError):
            raise
        except Exception as e:
            if self.is_database_not_exists_error(e):
                raise DatabaseNotExistsError(self.database) from e
            self.logger.error(f"连接 {self.db_config.display_url()} 失败: {str(e)}")
            raise ConnectionFailedError(str(e)) from e

        self.logger.info(f"已连接 {self.db_config.display_url()}")
        return self

    def _create_connection(self):
        raise NotImplementedError

    @staticmethod
    def is_database_not_exists_error(error: Exception) -> bool:
        return False

    @property
    def connected(self) -> bool:
        return self._connection is not None

    @contextmanager
    def get_cursor(self):
        """
        获取游标（上下文管理器）

        Yields:
            数据库游标
        """
        if self._connection is None:
            raise ConnectionFailedError(f"连接尚未建立: {self.db_config.display_url()}")
        with self._connection.cursor() as cursor:
            yield cursor

    def execute(self, sql: str, params=None) -> int:
        """
        执行写语句

        Returns:
            影响行数
        """
        with self.get_cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.rowcount

    def query(self, sql: str, params=None) -> List[tuple]:
        with self.get_cursor() as cursor:
            cursor.execute(sql, params)
            return list(cursor.fetchall())

    def query_one(self, sql: str, params=None) -> Optional[tuple]:
        with self.get_cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.fetchone()

    def query_scalar(self, sql: str, params=None, default: Any = None) -> Any:
        """执行查询并返回第一行第一列，无结果或为NULL时返回default"""
        row = self.query_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    def get_column_names(self, sql: str) -> List[str]:
        """执行查询并从游标描述中读取列名"""
        with self.get_cursor() as cursor:
            cursor.execute(sql)
            cursor.fetchall()
            return [column[0] for column in (cursor.description or [])]

    def close(self):
        """关闭连接"""
        if self._connection is not None:
            try:
                self._connection.close()
            finally:
                self._connection = None
                self.logger.debug(f"已关闭连接 {self.db_config.display_url()}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
