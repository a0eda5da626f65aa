"""
交互输入模块

负责数据库连接参数的交互式录入以及 y/n 确认，输入输出函数均可注入以便测试
"""

import getpass
import sys
from typing import Callable, Dict, Optional

from .config import DatabaseConfig, build_database_config
from .dialect import default_port, normalize_engine

MASKED_PASSWORD = '****'


class Prompter:
    """交互输入器"""

    def __init__(self, input_func: Callable[[str], str] = input,
                 password_func: Callable[[str], str] = getpass.getpass,
                 stream=None, auto_confirm: bool = False, interactive: bool = True):
        """
        初始化交互输入器

        Args:
            input_func: 普通输入函数
            password_func: 密码输入函数（不回显）
            stream: 输出流
            auto_confirm: 所有确认自动回答"是"
            interactive: 为False时不读取任何输入，直接使用默认值
        """
        self.input_func = input_func
        self.password_func = password_func
        self.stream = stream or sys.stdout
        self.auto_confirm = auto_confirm
        self.interactive = interactive

    def _print(self, text: str = ""):
        print(text, file=self.stream, flush=True)

    def prompt_with_default(self, prompt: str, default: str = "") -> str:
        """读取一行输入，直接回车时使用默认值"""
        label = f"  {prompt} [{default}]: " if default else f"  {prompt}: "
        try:
            value = self.input_func(label).strip()
        except EOFError:
            value = ""
        return value or default

    def read_password(self, prompt: str, default: str = "") -> str:
        """读取密码，已有默认值时显示为 ****，直接回车保留默认值"""
        label = f"  {prompt} [{MASKED_PASSWORD}]: " if default else f"  {prompt}: "
        try:
            value = self.password_func(label).strip()
        except EOFError:
            value = ""
        if not value or value == MASKED_PASSWORD:
            return default
        return value

    def confirm(self, message: str) -> bool:
        """
        y/n 确认

        Returns:
            输入 y 或 yes 时为True；自动确认模式下恒为True；非交互模式或读到EOF时为False
        """
        if self.auto_confirm:
            self._print(f"  {message} (y/n): y")
            return True
        if not self.interactive:
            self._print(f"  {message} (y/n): n (非交互模式)")
            return False
        try:
            answer = self.input_func(f"  {message} (y/n): ")
        except EOFError:
            return False
        return answer.strip().lower() in ('y', 'yes')

    def prompt_database_config(self, label: str, defaults: Dict,
                               locked_engine: Optional[str] = None) -> DatabaseConfig:
        """
        录入单个数据库的连接参数

        Args:
            label: 标题（源库/目标库）
            defaults: 配置文件与环境变量合并后的默认值
            locked_engine: 目标库引擎必须与源库一致，传入后不再询问引擎

        Returns:
            数据库配置
        """
        if not self.interactive:
            return build_database_config(defaults, engine=locked_engine)

        self._print()
        self._print(f"  🔌 {label}")
        self._print(f"  {'─' * 40}")

        if locked_engine:
            engine = normalize_engine(locked_engine)
            self._print(f"  数据库引擎: {engine} (必须与源库一致)")
        else:
            engine = normalize_engine(self.prompt_with_default(
                "数据库引擎 (mysql/pgsql)", defaults.get('engine') or 'mysql'))

        settings = {
            'engine': engine,
            'host': self.prompt_with_default("主机", defaults.get('host') or 'localhost'),
            'port': self.prompt_with_default("端口", str(defaults.get('port') or default_port(engine))),
            'database': self.prompt_with_default("数据库名", defaults.get('database') or ''),
            'user': self.prompt_with_default("用户名", defaults.get('user') or 'root'),
            'password': self.read_password("密码", defaults.get('password') or ''),
        }
        return build_database_config(settings, engine=engine)
