"""
SQL方言模块

描述各数据库引擎的语法差异：标识符/字符串引用、参数占位符、
外键检查开关、序列支持以及默认外键动作。
下游的结构抽取、结构应用和数据传输都只依赖这里的描述，不再按引擎分叉。
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Union

PLACEHOLDER_SINGLE = 'single'
PLACEHOLDER_POSITIONAL = 'positional'

ENGINE_MYSQL = 'mysql'
ENGINE_POSTGRESQL = 'pgsql'

_ENGINE_ALIASES = {
    'mysql': ENGINE_MYSQL,
    'mariadb': ENGINE_MYSQL,
    'pgsql': ENGINE_POSTGRESQL,
    'postgres': ENGINE_POSTGRESQL,
    'postgresql': ENGINE_POSTGRESQL,
}


def normalize_engine(engine: str) -> str:
    """
    统一引擎名称

    Args:
        engine: 用户输入的引擎名称 (mysql/mariadb/pgsql/postgres/postgresql)

    Returns:
        规范化后的引擎名称，未知名称原样返回（去除空白并转小写）
    """
    name = (engine or '').strip().lower()
    return _ENGINE_ALIASES.get(name, name)


@dataclass(frozen=True)
class Dialect:
    """数据库方言描述，无状态且不可变"""
    name: str
    identifier_quote: str
    placeholder_style: str
    disable_fk_statement: str
    enable_fk_statement: str
    supports_sequences: bool
    default_fk_action: str
    default_port: int

    def quote_identifier(self, name: str) -> str:
        """引用标识符，内部的引号字符加倍转义"""
        q = self.identifier_quote
        return f"{q}{name.replace(q, q + q)}{q}"

    def quote_literal(self, value: str) -> str:
        """引用字符串字面量，内部的单引号加倍转义"""
        return "'" + value.replace("'", "''") + "'"

    def placeholder(self, position: int) -> str:
        """
        生成参数占位符

        Args:
            position: 参数位置，从1开始

        Returns:
            单一风格返回固定的 %s；位置风格返回 %(pN)s
        """
        if self.placeholder_style == PLACEHOLDER_POSITIONAL:
            return f"%(p{position})s"
        return "%s"

    def placeholders(self, count: int, start: int = 1) -> List[str]:
        return [self.placeholder(position) for position in range(start, start + count)]

    def bind_params(self, values: Sequence) -> Union[tuple, Dict[str, object]]:
        """把扁平的参数列表整理成驱动需要的形式"""
        if self.placeholder_style == PLACEHOLDER_POSITIONAL:
            return {f"p{index}": value for index, value in enumerate(values, start=1)}
        return tuple(values)

    def disable_fk_checks_sql(self) -> str:
        return self.disable_fk_statement

    def enable_fk_checks_sql(self) -> str:
        return self.enable_fk_statement


MYSQL = Dialect(
    name=ENGINE_MYSQL,
    identifier_quote='`',
    placeholder_style=PLACEHOLDER_SINGLE,
    disable_fk_statement='SET FOREIGN_KEY_CHECKS = 0',
    enable_fk_statement='SET FOREIGN_KEY_CHECKS = 1',
    supports_sequences=False,
    default_fk_action='RESTRICT',
    default_port=3306,
)

POSTGRESQL = Dialect(
    name=ENGINE_POSTGRESQL,
    identifier_quote='"',
    placeholder_style=PLACEHOLDER_POSITIONAL,
    disable_fk_statement='SET session_replication_role = replica',
    enable_fk_statement='SET session_replication_role = DEFAULT',
    supports_sequences=True,
    default_fk_action='NO ACTION',
    default_port=5432,
)

_DIALECTS = {
    ENGINE_MYSQL: MYSQL,
    ENGINE_POSTGRESQL: POSTGRESQL,
}


def get_supported_engines() -> List[str]:
    return list(_DIALECTS)


def get_dialect(engine: str) -> Dialect:
    """
    根据引擎名称获取方言

    Raises:
        ValueError: 不支持的数据库引擎
    """
    dialect = _DIALECTS.get(normalize_engine(engine))
    if dialect is None:
        raise ValueError(f"不支持的数据库引擎: {engine}。支持的引擎: {', '.join(_DIALECTS)}")
    return dialect


def default_port(engine: str) -> int:
    """引擎默认端口，未知引擎按MySQL处理"""
    dialect = _DIALECTS.get(normalize_engine(engine))
    return dialect.default_port if dialect else MYSQL.default_port
