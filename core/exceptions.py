"""
迁移异常模块

定义迁移过程中各阶段使用的异常类型，所有异常都携带阶段和对象上下文
"""

from typing import Dict, Optional


class MigrationError(Exception):
    """迁移异常基类"""

    def __init__(self, message: str, stage: Optional[str] = None,
                 object_name: Optional[str] = None, details: Dict = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.object_name = object_name
        self.details = details or {}

    def __str__(self):
        prefix = f"[{self.stage}] " if self.stage else ""
        if self.object_name:
            return f"{prefix}{self.object_name}: {self.message}"
        return f"{prefix}{self.message}"


class ConnectionFailedError(MigrationError):
    """数据库连接失败"""

    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, stage='connect', details=details)


class DatabaseNotExistsError(MigrationError):
    """目标数据库不存在，可走创建后重试的流程"""

    def __init__(self, database: str):
        super().__init__(f'数据库 "{database}" 不存在', stage='connect', object_name=database)
        self.database = database


class EngineMismatchError(MigrationError):
    """源库与目标库引擎不一致"""

    def __init__(self, source_engine: str, destination_engine: str):
        super().__init__(
            f"源库引擎 ({source_engine}) 与目标库引擎 ({destination_engine}) 不一致",
            stage='preflight',
            details={'source_engine': source_engine, 'destination_engine': destination_engine}
        )


class ExtractionError(MigrationError):
    """读取源库结构失败"""


class ApplyError(MigrationError):
    """在目标库执行DDL失败"""


class TransferError(MigrationError):
    """数据传输失败"""


class RowCountMismatchError(MigrationError):
    """校验阶段源库与目标库行数不一致"""

    def __init__(self, table_name: str, source_rows: int, destination_rows: int):
        super().__init__(
            f"行数不一致: source={source_rows}, dest={destination_rows}",
            stage='finalize',
            object_name=table_name,
            details={'source_rows': source_rows, 'destination_rows': destination_rows}
        )
        self.table_name = table_name
        self.source_rows = source_rows
        self.destination_rows = destination_rows
