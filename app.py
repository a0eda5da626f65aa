#!/usr/bin/env python3
"""
MySQL/PostgreSQL 数据库迁移工具 - 命令行入口

子命令:
    analyze   分析单个数据库
    migrate   同引擎数据库迁移（支持 --dry-run 演练）
"""

import argparse
import logging
import sys
from typing import List, Optional

from core.analyzer import DatabaseAnalyzer
from core.config import (MigrationConfig, destination_settings, get_batch_size, has_env_defaults,
                         load_config, load_env_file, source_settings)
from core.database_factory import DatabaseConnectionFactory
from core.exceptions import MigrationError
from core.prompt import Prompter
from core.reporter import ConsoleReporter
from main_controller import DatabaseMigrator

__version__ = "1.0.0"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


def _setup_logging(config: dict, level_override: Optional[str] = None):
    """设置日志：文件记录完整日志，控制台只输出警告以上，避免打断进度显示"""
    log_config = config.get('logging', {})
    file_level = getattr(logging, (level_override or log_config.get('level', 'INFO')).upper(), logging.INFO)
    console_level = getattr(logging, str(log_config.get('console_level', 'WARNING')).upper(), logging.WARNING)

    file_handler = logging.FileHandler(log_config.get('file', 'migration.log'), encoding='utf-8')
    file_handler.setLevel(file_level)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)

    logging.basicConfig(
        level=min(file_level, console_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[console_handler, file_handler],
        force=True
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="db-migrate", description="MySQL/PostgreSQL 数据库迁移工具")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="日志文件级别（覆盖配置文件）")
    parser.add_argument("--env-file", help=".env 文件路径（默认在当前目录查找）")

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="分析数据库")
    analyze.add_argument("--config", default="config.yaml", help="配置文件路径")
    analyze.add_argument("--non-interactive", action="store_true", help="不询问连接参数，直接使用配置和环境变量")

    migrate = subparsers.add_parser("migrate", help="迁移数据库")
    migrate.add_argument("--config", default="config.yaml", help="配置文件路径")
    migrate.add_argument("--dry-run", action="store_true", help="演练模式，不修改目标库")
    migrate.add_argument("-y", "--yes", action="store_true", help="所有确认自动回答是")
    migrate.add_argument("--non-interactive", action="store_true", help="不询问连接参数，直接使用配置和环境变量")
    migrate.add_argument("--batch-size", type=int, help="每批读取的行数")

    return parser


def run_analyze(args, config: dict, reporter: ConsoleReporter, prompter: Prompter) -> int:
    """analyze 子命令"""
    defaults = source_settings(config)
    if has_env_defaults():
        reporter.info("📄 已从环境变量读取默认连接参数")

    db_config = prompter.prompt_database_config("数据库连接", defaults)
    validation = DatabaseConnectionFactory.validate_config(db_config)
    if not validation['valid']:
        reporter.error(validation['message'])
        return EXIT_FAILURE

    try:
        with DatabaseConnectionFactory.connect(db_config) as connection:
            DatabaseAnalyzer(connection, db_config, reporter).analyze()
    except MigrationError as e:
        reporter.error(str(e))
        logger.error(f"数据库分析失败: {str(e)}")
        return EXIT_FAILURE
    return EXIT_SUCCESS


def run_migrate(args, config: dict, reporter: ConsoleReporter, prompter: Prompter) -> int:
    """migrate 子命令"""
    reporter.header("数据库迁移")
    if has_env_defaults():
        reporter.info("📄 已从环境变量读取默认连接参数")

    source = prompter.prompt_database_config("源库", source_settings(config))
    destination = prompter.prompt_database_config("目标库", destination_settings(config),
                                                  locked_engine=source.engine)

    for label, db_config in (("源库", source), ("目标库", destination)):
        validation = DatabaseConnectionFactory.validate_config(db_config)
        if not validation['valid']:
            reporter.error(f"{label}配置无效: {validation['message']}")
            return EXIT_FAILURE

    batch_size = args.batch_size if args.batch_size is not None else get_batch_size(config)
    if batch_size <= 0:
        reporter.error(f"批次大小必须大于0: {batch_size}")
        return EXIT_FAILURE

    migration_config = MigrationConfig(
        source=source,
        destination=destination,
        dry_run=args.dry_run,
        batch_size=batch_size,
        auto_confirm=args.yes,
    )
    report = DatabaseMigrator(migration_config, reporter=reporter, prompter=prompter).run()
    return EXIT_SUCCESS if report.success else EXIT_FAILURE


def main(argv: Optional[List[str]] = None) -> int:
    """主函数"""
    parser = build_parser()
    args = parser.parse_args(argv)

    load_env_file(args.env_file)
    config = load_config(args.config)
    _setup_logging(config, args.log_level)

    reporter = ConsoleReporter()
    prompter = Prompter(auto_confirm=getattr(args, 'yes', False),
                        interactive=not args.non_interactive)

    try:
        if args.command == "analyze":
            return run_analyze(args, config, reporter, prompter)
        return run_migrate(args, config, reporter, prompter)
    except KeyboardInterrupt:
        print("\n✋ 已中断")
        return EXIT_INTERRUPTED
    except ValueError as e:
        reporter.error(str(e))
        logger.error(f"参数错误: {str(e)}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
