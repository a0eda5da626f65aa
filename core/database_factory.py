"""
数据库连接工厂模块

根据引擎类型选择合适的数据库连接类（MySQL或PostgreSQL）
"""

import logging
from typing import Dict, Union

from .config import DatabaseConfig
from .dialect import ENGINE_MYSQL, ENGINE_POSTGRESQL, get_supported_engines, normalize_engine
from .mysql_connection import MySQLConnection
from .postgresql_connection import PostgreSQLConnection


class DatabaseConnectionFactory:
    """数据库连接工厂类"""

    @staticmethod
    def create_connection(db_config: DatabaseConfig) -> Union[MySQLConnection, PostgreSQLConnection]:
        """
        根据配置创建数据库连接对象（未建连）

        Args:
            db_config: 数据库连接参数

        Returns:
            数据库连接对象

        Raises:
            ValueError: 不支持的数据库类型
        """
        logger = logging.getLogger(__name__)
        engine = normalize_engine(db_config.engine)

        if engine == ENGINE_MYSQL:
            logger.info("创建MySQL数据库连接")
            return MySQLConnection(db_config)
        elif engine == ENGINE_POSTGRESQL:
            logger.info("创建PostgreSQL数据库连接")
            return PostgreSQLConnection(db_config)
        else:
            raise ValueError(f"不支持的数据库类型: {db_config.engine}。支持的类型: mysql, pgsql")

    @staticmethod
    def connect(db_config: DatabaseConfig) -> Union[MySQLConnection, PostgreSQLConnection]:
        """创建连接对象并立即建连"""
        return DatabaseConnectionFactory.create_connection(db_config).connect()

    @staticmethod
    def create_database(db_config: DatabaseConfig) -> None:
        """在目标服务器上创建配置中指定的数据库"""
        DatabaseConnectionFactory.create_connection(db_config).create_database()

    @staticmethod
    def get_supported_types() -> list:
        """
        获取支持的数据库类型列表

        Returns:
            支持的数据库类型列表
        """
        return get_supported_engines()

    @staticmethod
    def validate_config(db_config: DatabaseConfig) -> Dict:
        """
        验证数据库配置

        Args:
            db_config: 数据库连接参数

        Returns:
            验证结果字典 {'valid': bool, 'message': str, 'engine': str}
        """
        engine = normalize_engine(db_config.engine)

        if engine not in DatabaseConnectionFactory.get_supported_types():
            return {
                'valid': False,
                'message': f"不支持的数据库类型: {db_config.engine}。支持的类型: {', '.join(DatabaseConnectionFactory.get_supported_types())}",
                'engine': engine
            }

        required_fields = ['host', 'port', 'user', 'database']
        missing_fields = [field for field in required_fields if not getattr(db_config, field)]

        if missing_fields:
            return {
                'valid': False,
                'message': f"{engine} 数据库配置缺少必需字段: {', '.join(missing_fields)}",
                'engine': engine
            }

        return {
            'valid': True,
            'message': f"{engine} 数据库配置验证通过",
            'engine': engine
        }
