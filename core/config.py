"""
配置模块

负责加载 config.yaml、.env 文件和环境变量，并构造一次迁移运行所需的配置对象。

优先级（低 -> 高）: 内置默认值 < config.yaml < 环境变量 < 交互输入
"""

import os
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .dialect import default_port, normalize_engine

DEFAULT_BATCH_SIZE = 10000

# 源库先查 SOURCE_DB_*，再回退到不带前缀的 DB_*
SOURCE_ENV_KEYS = {
    'engine': ['SOURCE_DB_ENGINE', 'SOURCE_DB_CONNECTION', 'DB_ENGINE', 'DB_CONNECTION'],
    'host': ['SOURCE_DB_HOST', 'DB_HOST'],
    'port': ['SOURCE_DB_PORT', 'DB_PORT'],
    'database': ['SOURCE_DB_DATABASE', 'SOURCE_DB_NAME', 'DB_DATABASE', 'DB_NAME'],
    'user': ['SOURCE_DB_USER', 'SOURCE_DB_USERNAME', 'DB_USER', 'DB_USERNAME'],
    'password': ['SOURCE_DB_PASSWORD', 'DB_PASSWORD'],
}

# 目标库只认 DESTINATION_DB_*，没有不带前缀的回退
DESTINATION_ENV_KEYS = {
    'engine': ['DESTINATION_DB_ENGINE', 'DESTINATION_DB_CONNECTION'],
    'host': ['DESTINATION_DB_HOST'],
    'port': ['DESTINATION_DB_PORT'],
    'database': ['DESTINATION_DB_DATABASE', 'DESTINATION_DB_NAME'],
    'user': ['DESTINATION_DB_USER', 'DESTINATION_DB_USERNAME'],
    'password': ['DESTINATION_DB_PASSWORD'],
}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """单个数据库的连接参数"""
    engine: str
    host: str = 'localhost'
    port: int = 3306
    database: str = ''
    user: str = 'root'
    password: str = ''

    def display_url(self) -> str:
        """不含密码的连接描述，用于日志和界面输出"""
        return f"{self.engine}://{self.user}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class MigrationConfig:
    """一次迁移运行的配置，运行期间不可变"""
    source: DatabaseConfig
    destination: DatabaseConfig
    dry_run: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    auto_confirm: bool = False


def get_default_config() -> Dict:
    """获取默认配置"""
    return {
        'database': {
            'source': {},
            'destination': {},
        },
        'migration': {
            'batch_size': DEFAULT_BATCH_SIZE,
        },
        'logging': {
            'level': 'INFO',
            'file': 'migration.log',
            'console_level': 'WARNING',
        },
    }


def load_config(config_path: Optional[str] = "config.yaml") -> Dict:
    """
    加载YAML配置文件，缺失的段落用默认值补齐

    Args:
        config_path: 配置文件路径

    Returns:
        配置字典
    """
    config = get_default_config()
    if not config_path or not os.path.exists(config_path):
        return config

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"警告：加载配置文件失败 ({e})，使用默认配置")
        return config

    if not isinstance(loaded, dict):
        print(f"警告：配置文件格式错误 ({config_path})，使用默认配置")
        return config

    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values
    logger.debug(f"已加载配置文件: {config_path}")
    return config


def load_env_file(env_file: Optional[str] = None) -> bool:
    """
    加载 .env 文件，不覆盖已存在的环境变量

    Returns:
        是否找到并加载了文件
    """
    return load_dotenv(dotenv_path=env_file, override=False)


def _first_env(environ: Mapping[str, str], keys) -> str:
    for key in keys:
        value = environ.get(key)
        if value:
            return value
    return ''


def _merge_settings(file_section: Optional[Dict], env_keys: Dict, environ: Mapping[str, str]) -> Dict:
    settings = {key: '' for key in env_keys}
    for key, value in (file_section or {}).items():
        if key in settings and value is not None:
            settings[key] = str(value)
    for key, names in env_keys.items():
        value = _first_env(environ, names)
        if value:
            settings[key] = value
    return settings


def source_settings(config: Dict, environ: Optional[Mapping[str, str]] = None) -> Dict:
    """源库的默认连接参数（配置文件 + 环境变量）"""
    environ = os.environ if environ is None else environ
    section = config.get('database', {}).get('source', {})
    return _merge_settings(section, SOURCE_ENV_KEYS, environ)


def destination_settings(config: Dict, environ: Optional[Mapping[str, str]] = None) -> Dict:
    """目标库的默认连接参数（配置文件 + DESTINATION_DB_* 环境变量）"""
    environ = os.environ if environ is None else environ
    section = config.get('database', {}).get('destination', {})
    return _merge_settings(section, DESTINATION_ENV_KEYS, environ)


def has_env_defaults(environ: Optional[Mapping[str, str]] = None) -> bool:
    """环境变量中是否提供了源库参数"""
    environ = os.environ if environ is None else environ
    return any(_first_env(environ, SOURCE_ENV_KEYS[key]) for key in ('host', 'user', 'database'))


def build_database_config(settings: Dict, engine: Optional[str] = None) -> DatabaseConfig:
    """
    根据参数字典构造数据库配置，空值用内置默认值补齐

    Args:
        settings: 参数字典 (engine/host/port/database/user/password)
        engine: 强制使用的引擎（目标库必须与源库一致）

    Raises:
        ValueError: 端口不是整数
    """
    resolved_engine = normalize_engine(engine or settings.get('engine') or 'mysql')
    port = settings.get('port') or default_port(resolved_engine)
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ValueError(f"无效的端口: {port}")

    return DatabaseConfig(
        engine=resolved_engine,
        host=settings.get('host') or 'localhost',
        port=port,
        database=settings.get('database') or '',
        user=settings.get('user') or 'root',
        password=settings.get('password') or '',
    )


def get_batch_size(config: Dict) -> int:
    batch_size = int(config.get('migration', {}).get('batch_size', DEFAULT_BATCH_SIZE))
    if batch_size <= 0:
        raise ValueError(f"batch_size 必须大于0: {batch_size}")
    return batch_size
