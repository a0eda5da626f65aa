"""
MySQL数据库连接模块

负责与MySQL/MariaDB建立连接、识别"数据库不存在"错误以及创建数据库
"""

import logging

import pymysql

from .config import DatabaseConfig
from .connection import DatabaseConnection
from .dialect import ENGINE_MYSQL, MYSQL

# MySQL错误码 1049: Unknown database
ER_BAD_DB_ERROR = 1049


class MySQLConnection(DatabaseConnection):
    """MySQL数据库连接管理器"""

    engine = ENGINE_MYSQL

    def __init__(self, db_config: DatabaseConfig, charset: str = 'utf8mb4'):
        super().__init__(db_config)
        self.charset = charset
        self.logger = logging.getLogger(__name__)

    def _create_connection(self, database: str = None):
        return pymysql.connect(
            host=self.host,
            port=int(self.port),
            user=self.user,
            password=self.password,
            database=self.database if database is None else (database or None),
            charset=self.charset,
            autocommit=True,
            connect_timeout=30
        )

    @staticmethod
    def is_database_not_exists_error(error: Exception) -> bool:
        """优先使用错误码判断，错误码不可用时再匹配错误信息"""
        args = getattr(error, 'args', ())
        if args and args[0] == ER_BAD_DB_ERROR:
            return True
        message = str(error)
        return '1049' in message or 'Unknown database' in message

    def create_database(self) -> None:
        """
        在服务器上创建目标数据库（不指定库名连接）

        Raises:
            pymysql.MySQLError: 连接或建库失败
        """
        connection = self._create_connection(database='')
        try:
            with connection.cursor() as cursor:
                cursor.execute(f"CREATE DATABASE {MYSQL.quote_identifier(self.database)}")
            self.logger.info(f"MySQL数据库 {self.database} 创建成功")
        finally:
            connection.close()
