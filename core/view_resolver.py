"""
视图依赖解析模块

从视图定义中提取 FROM/JOIN 后引用的对象名，并按依赖关系对视图排序，
保证被依赖的视图先创建。基于正则的提取属于尽力而为的启发式方法。
"""

import logging
import re
from typing import List, Sequence

_DEPENDENCY_RE = re.compile(r'(?:FROM|JOIN)\s+[`"]?([a-zA-Z_][a-zA-Z0-9_]*)[`"]?', re.IGNORECASE)

logger = logging.getLogger(__name__)


def extract_view_dependencies(definition: str) -> List[str]:
    """
    提取视图定义中 FROM/JOIN 之后引用的表名或视图名

    Args:
        definition: 视图定义SQL

    Returns:
        去重后的名称列表，保持首次出现的顺序
    """
    seen = []
    for name in _DEPENDENCY_RE.findall(definition or ''):
        if name not in seen:
            seen.append(name)
    return seen


def sort_views_by_dependency(views: Sequence) -> list:
    """
    对视图做拓扑排序，只考虑视图之间的依赖（其余引用是已创建的基础表）

    反复扫描尚未放置的视图，依赖都已放置的视图即可放置；
    某一轮扫描没有放置任何视图时说明存在环（包括自引用），此时按原顺序返回。

    Args:
        views: 带 name 和 dependencies 属性的视图定义序列

    Returns:
        排序后的视图列表
    """
    view_names = {view.name for view in views}
    ordered = []
    placed = set()

    while len(ordered) < len(views):
        progressed = False
        for view in views:
            if view.name in placed:
                continue
            pending = [dep for dep in view.dependencies if dep in view_names and dep not in placed]
            if not pending:
                ordered.append(view)
                placed.add(view.name)
                progressed = True
        if not progressed:
            unresolved = [view.name for view in views if view.name not in placed]
            logger.warning(f"视图之间存在循环依赖，按原顺序创建: {', '.join(unresolved)}")
            return list(views)

    return ordered
