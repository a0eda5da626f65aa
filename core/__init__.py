"""
核心模块
包含数据库连接、结构抽取与重建、数据传输、迁移前检查和数据库分析等核心功能
"""

from .config import DatabaseConfig, MigrationConfig
from .database_factory import DatabaseConnectionFactory
from .dialect import Dialect, get_dialect
from .exceptions import MigrationError
from .schema_extractor import SchemaExtractor, TableSchema, get_extractor
from .schema_applier import SchemaApplier
from .data_transfer import DataTransferer
from .preflight import PreflightValidator
from .analyzer import DatabaseAnalyzer

__all__ = [
    'DatabaseConfig',
    'MigrationConfig',
    'DatabaseConnectionFactory',
    'Dialect',
    'get_dialect',
    'MigrationError',
    'SchemaExtractor',
    'TableSchema',
    'get_extractor',
    'SchemaApplier',
    'DataTransferer',
    'PreflightValidator',
    'DatabaseAnalyzer'
]
