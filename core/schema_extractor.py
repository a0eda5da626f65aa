"""
表结构抽取模块

从源库的系统目录读取表、索引、外键、视图和序列定义，
生成可直接在目标库执行的DDL语句
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .dialect import ENGINE_MYSQL, ENGINE_POSTGRESQL, MYSQL, POSTGRESQL, Dialect, normalize_engine
from .exceptions import ExtractionError
from .view_resolver import extract_view_dependencies, sort_views_by_dependency

# PostgreSQL 中 "带 nextval 默认值的整数列" 转换为自增类型
_SERIAL_TYPES = {
    'smallint': 'SMALLSERIAL',
    'integer': 'SERIAL',
    'bigint': 'BIGSERIAL',
}

# pg_constraint.confdeltype / confupdtype
_PG_FK_ACTIONS = {
    'a': 'NO ACTION',
    'r': 'RESTRICT',
    'c': 'CASCADE',
    'n': 'SET NULL',
    'd': 'SET DEFAULT',
}

_DEFINER_RE = re.compile(
    r"\s+DEFINER\s*=\s*(?:`[^`]*`|'[^']*'|[^\s@]+)@(?:`[^`]*`|'[^']*'|\S+)",
    re.IGNORECASE
)


@dataclass(frozen=True)
class IndexDef:
    """二级索引定义（不含主键）"""
    name: str
    table_name: str
    columns: List[str]
    is_unique: bool
    create_statement: str


@dataclass(frozen=True)
class ForeignKeyDef:
    """外键约束定义"""
    name: str
    table_name: str
    columns: List[str]
    ref_table: str
    ref_columns: List[str]
    on_delete: str
    on_update: str
    constraint_statement: str


@dataclass(frozen=True)
class TableSchema:
    """表结构数据类，抽取后不再修改"""
    name: str
    create_statement: str
    primary_key: List[str] = field(default_factory=list)
    indexes: List[IndexDef] = field(default_factory=list)
    foreign_keys: List[ForeignKeyDef] = field(default_factory=list)


@dataclass(frozen=True)
class ViewDef:
    """视图定义，dependencies 为定义中引用到的对象名"""
    name: str
    create_statement: str
    dependencies: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SequenceDef:
    """序列定义（仅支持序列的引擎）"""
    name: str
    create_statement: str
    current_value: int
    owned_by: str = ""
    is_called: bool = True


def _as_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, (bytes, bytearray)):
        return value.decode('utf-8')
    return str(value)


def _split_list(value) -> List[str]:
    text = _as_text(value)
    return text.split(',') if text else []


class SchemaExtractor:
    """结构抽取器基类，各引擎实现具体的目录查询"""

    dialect: Dialect = None

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def extract_tables(self, connection, database: str) -> List[TableSchema]:
        """
        抽取所有基础表的结构

        Args:
            connection: 源库连接
            database: 源库名称

        Returns:
            按表名排序的表结构列表

        Raises:
            ExtractionError: 任一表抽取失败（整表失败，带表名上下文）
        """
        try:
            table_names = self.list_tables(connection, database)
        except Exception as e:
            raise ExtractionError(f"获取表列表失败: {str(e)}", stage='schema') from e

        tables = []
        for table_name in table_names:
            try:
                table = self.extract_table(connection, database, table_name)
            except ExtractionError:
                raise
            except Exception as e:
                raise ExtractionError(f"抽取表结构失败: {str(e)}", stage='schema', object_name=table_name) from e
            self.logger.debug(f"表 {table_name} 抽取完成: {len(table.indexes)} 个索引, {len(table.foreign_keys)} 个外键")
            tables.append(table)

        self.logger.info(f"共抽取 {len(tables)} 张表")
        return tables

    def extract_views(self, connection, database: str) -> List[ViewDef]:
        """抽取所有视图，并按依赖关系排序"""
        views = self.read_views(connection, database)
        self.logger.info(f"共抽取 {len(views)} 个视图")
        return sort_views_by_dependency(views)

    def extract_sequences(self, connection, database: str) -> List[SequenceDef]:
        return []

    def list_tables(self, connection, database: str) -> List[str]:
        raise NotImplementedError

    def extract_table(self, connection, database: str, table_name: str) -> TableSchema:
        raise NotImplementedError

    def read_views(self, connection, database: str) -> List[ViewDef]:
        raise NotImplementedError

    def build_create_index_statement(self, table_name: str, index_name: str, columns: List[str],
                                     is_unique: bool, index_type: str = '',
                                     sub_parts: Optional[List[str]] = None) -> str:
        """构造 CREATE INDEX 语句"""
        q = self.dialect.quote_identifier
        if is_unique:
            kind = 'UNIQUE '
        elif index_type in ('FULLTEXT', 'SPATIAL'):
            kind = f'{index_type} '
        else:
            kind = ''

        column_specs = []
        for position, column in enumerate(columns):
            spec = q(column)
            if sub_parts and position < len(sub_parts) and sub_parts[position]:
                spec += f"({sub_parts[position]})"
            column_specs.append(spec)

        return f"CREATE {kind}INDEX {q(index_name)} ON {q(table_name)} ({', '.join(column_specs)})"

    def build_add_foreign_key_statement(self, table_name: str, name: str, columns: List[str],
                                        ref_table: str, ref_columns: List[str],
                                        on_delete: str, on_update: str) -> str:
        """构造 ALTER TABLE ... ADD CONSTRAINT 语句，与默认动作相同的子句省略"""
        q = self.dialect.quote_identifier
        statement = (
            f"ALTER TABLE {q(table_name)} ADD CONSTRAINT {q(name)} "
            f"FOREIGN KEY ({', '.join(q(c) for c in columns)}) "
            f"REFERENCES {q(ref_table)} ({', '.join(q(c) for c in ref_columns)})"
        )
        default_action = self.dialect.default_fk_action
        if on_delete and on_delete != default_action:
            statement += f" ON DELETE {on_delete}"
        if on_update and on_update != default_action:
            statement += f" ON UPDATE {on_update}"
        return statement


class MySQLSchemaExtractor(SchemaExtractor):
    """MySQL结构抽取器，建表语句直接使用 SHOW CREATE TABLE"""

    dialect = MYSQL

    def list_tables(self, connection, database: str) -> List[str]:
        rows = connection.query("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """, (database,))
        return [_as_text(row[0]) for row in rows]

    def extract_table(self, connection, database: str, table_name: str) -> TableSchema:
        q = self.dialect.quote_identifier

        row = connection.query_one(f"SHOW CREATE TABLE {q(database)}.{q(table_name)}")
        if not row:
            raise ExtractionError("SHOW CREATE TABLE 没有返回结果", stage='schema', object_name=table_name)
        create_statement = _as_text(row[1])

        index_rows = connection.query("""
            SELECT
                index_name,
                GROUP_CONCAT(column_name ORDER BY seq_in_index SEPARATOR ',') AS columns,
                GROUP_CONCAT(COALESCE(sub_part, '') ORDER BY seq_in_index SEPARATOR ',') AS sub_parts,
                non_unique,
                index_type,
                SUM(column_name IS NULL) AS expression_parts
            FROM information_schema.statistics
            WHERE table_schema = %s AND table_name = %s
            GROUP BY index_name, non_unique, index_type
            ORDER BY index_name
        """, (database, table_name))

        primary_key = []
        indexes = []
        for index_name, columns, sub_parts, non_unique, index_type, expression_parts in index_rows:
            index_name = _as_text(index_name)
            column_list = _split_list(columns)
            if index_name == 'PRIMARY':
                primary_key = column_list
                continue
            if int(expression_parts or 0) > 0:
                # 函数索引只能由 SHOW CREATE TABLE 保留，随建表语句一起创建
                self.logger.debug(f"表 {table_name} 的函数索引 {index_name} 保留在建表语句中")
                continue
            is_unique = int(non_unique) == 0
            indexes.append(IndexDef(
                name=index_name,
                table_name=table_name,
                columns=column_list,
                is_unique=is_unique,
                create_statement=self.build_create_index_statement(
                    table_name, index_name, column_list, is_unique,
                    _as_text(index_type).upper(), _as_text(sub_parts).split(',')
                )
            ))

        fk_rows = connection.query("""
            SELECT
                kcu.constraint_name,
                GROUP_CONCAT(kcu.column_name ORDER BY kcu.ordinal_position SEPARATOR ',') AS columns,
                kcu.referenced_table_name,
                GROUP_CONCAT(kcu.referenced_column_name ORDER BY kcu.ordinal_position SEPARATOR ',') AS ref_columns,
                rc.delete_rule,
                rc.update_rule
            FROM information_schema.key_column_usage kcu
            JOIN information_schema.referential_constraints rc
                ON kcu.constraint_name = rc.constraint_name
                AND kcu.table_schema = rc.constraint_schema
                AND kcu.table_name = rc.table_name
            WHERE kcu.table_schema = %s
                AND kcu.table_name = %s
                AND kcu.referenced_table_name IS NOT NULL
            GROUP BY kcu.constraint_name, kcu.referenced_table_name, rc.delete_rule, rc.update_rule
            ORDER BY kcu.constraint_name
        """, (database, table_name))

        foreign_keys = [
            self._build_foreign_key(table_name, *fk_row) for fk_row in fk_rows
        ]

        return TableSchema(
            name=table_name,
            create_statement=create_statement,
            primary_key=primary_key,
            indexes=indexes,
            foreign_keys=foreign_keys,
        )

    def _build_foreign_key(self, table_name, name, columns, ref_table, ref_columns, on_delete, on_update) -> ForeignKeyDef:
        name = _as_text(name)
        column_list = _split_list(columns)
        ref_table = _as_text(ref_table)
        ref_column_list = _split_list(ref_columns)
        on_delete = _as_text(on_delete)
        on_update = _as_text(on_update)
        return ForeignKeyDef(
            name=name,
            table_name=table_name,
            columns=column_list,
            ref_table=ref_table,
            ref_columns=ref_column_list,
            on_delete=on_delete,
            on_update=on_update,
            constraint_statement=self.build_add_foreign_key_statement(
                table_name, name, column_list, ref_table, ref_column_list, on_delete, on_update
            )
        )

    def read_views(self, connection, database: str) -> List[ViewDef]:
        q = self.dialect.quote_identifier
        try:
            rows = connection.query("""
                SELECT table_name, view_definition
                FROM information_schema.views
                WHERE table_schema = %s
                ORDER BY table_name
            """, (database,))
        except Exception as e:
            raise ExtractionError(f"获取视图列表失败: {str(e)}", stage='views') from e

        views = []
        for view_name, definition in rows:
            view_name = _as_text(view_name)
            try:
                row = connection.query_one(f"SHOW CREATE VIEW {q(database)}.{q(view_name)}")
            except Exception as e:
                raise ExtractionError(f"获取 CREATE VIEW 失败: {str(e)}", stage='views', object_name=view_name) from e
            if not row:
                raise ExtractionError("SHOW CREATE VIEW 没有返回结果", stage='views', object_name=view_name)

            create_statement = self._unqualify(_DEFINER_RE.sub('', _as_text(row[1])), database)
            views.append(ViewDef(
                name=view_name,
                create_statement=create_statement,
                dependencies=extract_view_dependencies(self._unqualify(_as_text(definition), database)),
            ))
        return views

    def _unqualify(self, sql: str, database: str) -> str:
        """去掉源库名限定，使视图在目标库中引用目标库自己的对象"""
        return sql.replace(f"{self.dialect.quote_identifier(database)}.", '')


class PostgreSQLSchemaExtractor(SchemaExtractor):
    """PostgreSQL结构抽取器，根据系统目录重建建表语句（public模式）"""

    dialect = POSTGRESQL

    def list_tables(self, connection, database: str) -> List[str]:
        rows = connection.query("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """)
        return [row[0] for row in rows]

    def extract_table(self, connection, database: str, table_name: str) -> TableSchema:
        regclass = self.dialect.quote_identifier(table_name)
        primary_key = self._read_primary_key(connection, regclass)

        return TableSchema(
            name=table_name,
            create_statement=self._build_create_table_statement(connection, table_name, regclass, primary_key),
            primary_key=primary_key,
            indexes=self._read_indexes(connection, table_name),
            foreign_keys=self._read_foreign_keys(connection, table_name, regclass),
        )

    def _build_create_table_statement(self, connection, table_name: str, regclass: str,
                                      primary_key: List[str]) -> str:
        q = self.dialect.quote_identifier
        rows = connection.query("""
            SELECT
                a.attname,
                pg_catalog.format_type(a.atttypid, a.atttypmod),
                COALESCE(pg_get_expr(d.adbin, d.adrelid), ''),
                a.attnotnull,
                a.attidentity
            FROM pg_catalog.pg_attribute a
            LEFT JOIN pg_catalog.pg_attrdef d ON (a.attrelid, a.attnum) = (d.adrelid, d.adnum)
            WHERE a.attrelid = %s::regclass
                AND a.attnum > 0
                AND NOT a.attisdropped
            ORDER BY a.attnum
        """, (regclass,))

        definitions = []
        for column_name, data_type, column_default, not_null, identity in rows:
            is_serial = False
            if 'nextval(' in column_default and data_type in _SERIAL_TYPES:
                # 自增类型自带序列，不再保留 nextval 默认值
                data_type = _SERIAL_TYPES[data_type]
                column_default = ''
                is_serial = True

            definition = f"    {q(column_name)} {data_type}"
            if identity:
                definition += " GENERATED BY DEFAULT AS IDENTITY"
            elif column_default:
                definition += f" DEFAULT {column_default}"
            if not_null and not is_serial:
                definition += " NOT NULL"
            definitions.append(definition)

        check_rows = connection.query("""
            SELECT conname, pg_get_constraintdef(oid)
            FROM pg_constraint
            WHERE conrelid = %s::regclass AND contype = 'c'
            ORDER BY conname
        """, (regclass,))
        for constraint_name, constraint_def in check_rows:
            definitions.append(f"    CONSTRAINT {q(constraint_name)} {constraint_def}")

        if primary_key:
            definitions.append(f"    PRIMARY KEY ({', '.join(q(c) for c in primary_key)})")

        return f"CREATE TABLE {q(table_name)} (\n" + ",\n".join(definitions) + "\n)"

    def _read_primary_key(self, connection, regclass: str) -> List[str]:
        rows = connection.query("""
            SELECT a.attname
            FROM pg_index i
            JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
            WHERE i.indrelid = %s::regclass AND i.indisprimary
            ORDER BY array_position(i.indkey::int2[], a.attnum)
        """, (regclass,))
        return [row[0] for row in rows]

    def _read_indexes(self, connection, table_name: str) -> List[IndexDef]:
        rows = connection.query("""
            SELECT
                i.relname,
                array_to_string(array_agg(a.attname ORDER BY k.n) FILTER (WHERE a.attname IS NOT NULL), ','),
                ix.indisunique,
                pg_get_indexdef(ix.indexrelid)
            FROM pg_index ix
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, n) ON true
            LEFT JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
            WHERE t.relname = %s
                AND n.nspname = 'public'
                AND NOT ix.indisprimary
            GROUP BY i.relname, ix.indisunique, ix.indexrelid
            ORDER BY i.relname
        """, (table_name,))
        return [
            IndexDef(
                name=index_name,
                table_name=table_name,
                columns=_split_list(columns),
                is_unique=bool(is_unique),
                create_statement=index_def,
            )
            for index_name, columns, is_unique, index_def in rows
        ]

    def _read_foreign_keys(self, connection, table_name: str, regclass: str) -> List[ForeignKeyDef]:
        rows = connection.query("""
            SELECT
                c.conname,
                array_to_string(ARRAY(
                    SELECT a.attname
                    FROM unnest(c.conkey) WITH ORDINALITY AS k(attnum, n)
                    JOIN pg_attribute a ON a.attrelid = c.conrelid AND a.attnum = k.attnum
                    ORDER BY k.n
                ), ','),
                rt.relname,
                array_to_string(ARRAY(
                    SELECT a.attname
                    FROM unnest(c.confkey) WITH ORDINALITY AS k(attnum, n)
                    JOIN pg_attribute a ON a.attrelid = c.confrelid AND a.attnum = k.attnum
                    ORDER BY k.n
                ), ','),
                c.confdeltype,
                c.confupdtype
            FROM pg_constraint c
            JOIN pg_class rt ON rt.oid = c.confrelid
            WHERE c.conrelid = %s::regclass AND c.contype = 'f'
            ORDER BY c.conname
        """, (regclass,))

        foreign_keys = []
        for name, columns, ref_table, ref_columns, delete_type, update_type in rows:
            column_list = _split_list(columns)
            ref_column_list = _split_list(ref_columns)
            on_delete = _PG_FK_ACTIONS.get(delete_type, 'NO ACTION')
            on_update = _PG_FK_ACTIONS.get(update_type, 'NO ACTION')
            foreign_keys.append(ForeignKeyDef(
                name=name,
                table_name=table_name,
                columns=column_list,
                ref_table=ref_table,
                ref_columns=ref_column_list,
                on_delete=on_delete,
                on_update=on_update,
                constraint_statement=self.build_add_foreign_key_statement(
                    table_name, name, column_list, ref_table, ref_column_list, on_delete, on_update
                )
            ))
        return foreign_keys

    def read_views(self, connection, database: str) -> List[ViewDef]:
        try:
            rows = connection.query("""
                SELECT
                    viewname,
                    pg_get_viewdef((quote_ident(schemaname) || '.' || quote_ident(viewname))::regclass, true)
                FROM pg_views
                WHERE schemaname = 'public'
                ORDER BY viewname
            """)
        except Exception as e:
            raise ExtractionError(f"获取视图列表失败: {str(e)}", stage='views') from e

        return [
            ViewDef(
                name=view_name,
                create_statement=f"CREATE VIEW {self.dialect.quote_identifier(view_name)} AS\n{definition}",
                dependencies=extract_view_dependencies(definition),
            )
            for view_name, definition in rows
        ]

    def extract_sequences(self, connection, database: str) -> List[SequenceDef]:
        """
        抽取public模式下的所有序列

        从未调用过 nextval 的序列 last_value 为 NULL，此时以 start_value 作为当前值且 is_called 为 False
        """
        try:
            rows = connection.query("""
                SELECT
                    s.sequencename,
                    CASE WHEN d.refobjid IS NOT NULL
                        THEN rt.relname || '.' || a.attname
                    END AS owned_by,
                    s.last_value,
                    s.start_value,
                    s.data_type::text,
                    s.increment_by,
                    s.min_value,
                    s.max_value,
                    s.cycle
                FROM pg_sequences s
                LEFT JOIN pg_depend d
                    ON d.objid = (quote_ident(s.schemaname) || '.' || quote_ident(s.sequencename))::regclass
                    AND d.classid = 'pg_class'::regclass
                    AND d.refclassid = 'pg_class'::regclass
                    AND d.deptype IN ('a', 'i')
                LEFT JOIN pg_class rt ON rt.oid = d.refobjid
                LEFT JOIN pg_attribute a ON a.attrelid = d.refobjid AND a.attnum = d.refobjsubid
                WHERE s.schemaname = 'public'
                ORDER BY s.sequencename
            """)
        except Exception as e:
            raise ExtractionError(f"获取序列列表失败: {str(e)}", stage='sequences') from e

        q = self.dialect.quote_identifier
        sequences = []
        for name, owned_by, last_value, start_value, data_type, increment, min_value, max_value, cycle in rows:
            create_statement = (
                f"CREATE SEQUENCE IF NOT EXISTS {q(name)} AS {data_type} "
                f"INCREMENT BY {increment} MINVALUE {min_value} MAXVALUE {max_value} "
                f"START WITH {start_value} {'CYCLE' if cycle else 'NO CYCLE'}"
            )
            sequences.append(SequenceDef(
                name=name,
                create_statement=create_statement,
                current_value=int(last_value if last_value is not None else start_value),
                owned_by=owned_by or '',
                is_called=last_value is not None,
            ))

        self.logger.info(f"共抽取 {len(sequences)} 个序列")
        return sequences


def get_extractor(engine: str) -> SchemaExtractor:
    """
    根据引擎获取结构抽取器

    Raises:
        ValueError: 不支持的数据库引擎
    """
    engine = normalize_engine(engine)
    if engine == ENGINE_MYSQL:
        return MySQLSchemaExtractor()
    elif engine == ENGINE_POSTGRESQL:
        return PostgreSQLSchemaExtractor()
    raise ValueError(f"不支持的数据库引擎: {engine}")
