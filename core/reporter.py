"""
控制台输出模块

核心逻辑只通过 ConsoleReporter 的方法输出进度和结果，不持有任何全局样式状态
"""

import sys
from typing import List, Sequence


def format_bytes(size: float) -> str:
    """字节数转换为可读格式，如 1.50 KB"""
    unit = 1024
    if size < unit:
        return f"{size:.0f} B"
    div, exp = float(unit), 0
    n = size / unit
    while n >= unit and exp < 5:
        div *= unit
        exp += 1
        n /= unit
    return f"{size / div:.2f} {'KMGTPE'[exp]}B"


def format_number(n: int) -> str:
    """千位分隔，如 1234567 -> 1,234,567"""
    return f"{int(n):,}"


def truncate(text: str, max_len: int) -> str:
    """超长字符串截断并以 ... 结尾"""
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return text[:max_len]
    return text[:max_len - 3] + "..."


def format_duration(seconds: float) -> str:
    """耗时格式化: 850ms / 2.3s / 4m 12s / 1h 5m"""
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds) % 60}s"
    return f"{int(seconds // 3600)}h {int(seconds // 60) % 60}m"


def format_uptime(seconds: int) -> str:
    """服务器运行时长格式化: 2d 5h 30m"""
    seconds = int(seconds)
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class ConsoleReporter:
    """控制台报告器"""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    def _print(self, text: str = "", end: str = "\n"):
        print(text, end=end, file=self.stream, flush=True)

    def header(self, text: str):
        self._print()
        self._print("=" * 60)
        self._print(f"  {text}")
        self._print("=" * 60)

    def section(self, text: str):
        self._print()
        self._print(f"  {text}")
        self._print(f"  {'─' * 40}")

    def success(self, text: str):
        self._print(f"  ✅ {text}")

    def error(self, text: str):
        self._print(f"  ❌ {text}")

    def warning(self, text: str):
        self._print(f"  ⚠️  {text}")

    def info(self, text: str):
        self._print(f"  {text}")

    def dry_run(self, text: str):
        self._print(f"  [DRY RUN] {text}")

    def field(self, label: str, value, width: int = 22):
        self._print(f"  {label + ':':<{width}} {value}")

    def table_row(self, values: Sequence, widths: List[int]):
        cells = [f"{str(value):<{width}}" for value, width in zip(values, widths)]
        self._print("  " + " ".join(cells).rstrip())

    def rule(self, width: int):
        self._print(f"  {'─' * width}")

    def phase(self, current: int, total: int, description: str):
        self._print()
        self._print(f"  🚀 [{current}/{total}] {description}")

    def phase_done(self, duration: float):
        self._print(f"     ✅ 完成 ({format_duration(duration)})")

    def phase_skipped(self, reason: str):
        self._print(f"     ⏭️  跳过 ({reason})")

    def phase_failed(self, error):
        self._print("     ❌ 失败")
        self._print(f"        错误: {error}")

    def table_progress(self, table_name: str, rows: int, total: int):
        percent = rows / total * 100 if total else 100.0
        self._print(f"\r    {table_name}: {format_number(rows)} / {format_number(total)} ({percent:.1f}%)", end="")

    def table_done(self, table_name: str, rows: int, duration: float):
        self._print(f"\r    ✅ {table_name}: {format_number(rows)} 行 ({format_duration(duration)})")

    def summary(self, tables: int, rows: int, duration: float, dry_run: bool = False):
        self._print()
        self._print("=" * 60)
        self._print("  🎉 迁移演练完成!" if dry_run else "  🎉 迁移完成!")
        self._print(f"    表:   {tables}")
        self._print(f"    行数: {format_number(rows)}")
        self._print(f"    耗时: {format_duration(duration)}")
        self._print("=" * 60)
