"""
表结构应用模块

按编排器指定的阶段顺序在目标库执行DDL：建表、索引、外键、视图和序列。
任一对象失败立即抛出带对象名的异常，不做跳过继续。
"""

import logging
import re
from typing import Iterable

from .dialect import Dialect
from .exceptions import ApplyError
from .schema_extractor import ForeignKeyDef, IndexDef, SequenceDef, TableSchema, ViewDef

_IDENT = r'(?:`(?:[^`]|``)*`|"(?:[^"]|"")*"|[\w$]+)'
_QUALIFIED_IDENT = rf'{_IDENT}(?:\s*\.\s*{_IDENT})?'
_FK_ACTION = r'(?:SET\s+NULL|SET\s+DEFAULT|NO\s+ACTION|CASCADE|RESTRICT)'

_FOREIGN_KEY_CLAUSE_RE = re.compile(
    rf',\s*(?:CONSTRAINT\s+{_IDENT}\s+)?FOREIGN\s+KEY\s*(?:{_IDENT}\s*)?\([^)]*\)\s*'
    rf'REFERENCES\s+{_QUALIFIED_IDENT}\s*\([^)]*\)'
    r'(?:\s+MATCH\s+(?:FULL|PARTIAL|SIMPLE))?'
    rf'(?:\s+ON\s+(?:DELETE|UPDATE)\s+{_FK_ACTION})*',
    re.IGNORECASE
)


def strip_foreign_keys(create_statement: str) -> str:
    """
    去掉建表语句中的全部外键子句（含 ON DELETE / ON UPDATE），
    外键在数据导入完成后统一添加，建表顺序因此与外键依赖无关
    """
    return _FOREIGN_KEY_CLAUSE_RE.sub('', create_statement)


def strip_inline_indexes(create_statement: str, index_names: Iterable[str], dialect: Dialect) -> str:
    """去掉建表语句中内联定义的二级索引，这些索引会在索引阶段单独创建"""
    for name in index_names:
        pattern = re.compile(
            r',[ \t]*\n?[ \t]*(?:UNIQUE\s+|FULLTEXT\s+|SPATIAL\s+)?(?:KEY|INDEX)\s+'
            + re.escape(dialect.quote_identifier(name))
            + r'\s*\([^\n]*?(?=,\s*\n|\n|$)',
            re.IGNORECASE
        )
        create_statement = pattern.sub('', create_statement, count=1)
    return create_statement


class SchemaApplier:
    """结构应用器，按方言参数化"""

    def __init__(self, connection, dialect: Dialect):
        """
        初始化结构应用器

        Args:
            connection: 目标库连接
            dialect: 目标库方言
        """
        self.connection = connection
        self.dialect = dialect
        self.logger = logging.getLogger(__name__)

    def _execute(self, sql: str, stage: str, object_name: str, action: str):
        try:
            self.connection.execute(sql)
        except Exception as e:
            self.logger.error(f"{action} {object_name} 失败: {str(e)}")
            raise ApplyError(f"{action}失败: {str(e)}", stage=stage, object_name=object_name) from e

    def create_table(self, table: TableSchema):
        """建表（先去掉外键和内联二级索引）"""
        statement = strip_foreign_keys(table.create_statement)
        statement = strip_inline_indexes(statement, [index.name for index in table.indexes], self.dialect)
        self._execute(statement, 'schema', table.name, '创建表')
        self.logger.debug(f"表 {table.name} 创建成功")

    def create_index(self, index: IndexDef):
        self._execute(index.create_statement, 'indexes', index.name, '创建索引')

    def create_foreign_key(self, foreign_key: ForeignKeyDef):
        self._execute(foreign_key.constraint_statement, 'indexes', foreign_key.name, '创建外键')

    def create_view(self, view: ViewDef):
        self._execute(view.create_statement, 'views', view.name, '创建视图')

    def create_sequence(self, sequence: SequenceDef):
        """创建独立序列；属于某列的序列由该列的 SERIAL 或标识列定义自动创建"""
        if not self.dialect.supports_sequences:
            return
        if sequence.owned_by:
            self.logger.debug(f"序列 {sequence.name} 属于 {sequence.owned_by}，随建表创建")
            return
        self._execute(sequence.create_statement, 'sequences', sequence.name, '创建序列')

    def set_sequence_value(self, sequence: SequenceDef):
        """
        通过 setval 把序列推进到源库的当前值

        属于某列的序列在目标库中按列查找，目标库里它的名字可能与源库不同
        """
        if not self.dialect.supports_sequences:
            return
        q = self.dialect.quote_identifier
        literal = self.dialect.quote_literal
        if sequence.owned_by:
            table_name, _, column_name = sequence.owned_by.partition('.')
            target = f"pg_get_serial_sequence({literal(q(table_name))}, {literal(column_name)})"
        else:
            target = literal(q(sequence.name))
        is_called = 'true' if sequence.is_called else 'false'
        sql = f"SELECT setval({target}, {int(sequence.current_value)}, {is_called})"
        self._execute(sql, 'sequences', sequence.name, '设置序列值')
