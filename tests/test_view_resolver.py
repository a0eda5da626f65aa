#!/usr/bin/env python3
"""
视图依赖解析测试
"""

import unittest

from core.schema_extractor import ViewDef
from core.view_resolver import extract_view_dependencies, sort_views_by_dependency


def _view(name, *dependencies):
    return ViewDef(name=name, create_statement=f"CREATE VIEW {name} AS SELECT 1", dependencies=list(dependencies))


class TestExtractViewDependencies(unittest.TestCase):
    """依赖提取测试"""

    def test_from_and_join(self):
        definition = "SELECT u.id FROM users u JOIN `orders` o ON o.user_id = u.id LEFT JOIN \"items\" i ON 1=1"
        self.assertEqual(extract_view_dependencies(definition), ['users', 'orders', 'items'])

    def test_duplicates_removed_in_order(self):
        definition = "select * from a join b on 1=1 join a on 1=1"
        self.assertEqual(extract_view_dependencies(definition), ['a', 'b'])

    def test_empty_definition(self):
        self.assertEqual(extract_view_dependencies(''), [])
        self.assertEqual(extract_view_dependencies(None), [])


class TestSortViewsByDependency(unittest.TestCase):
    """视图排序测试"""

    def test_dependency_created_first(self):
        views = [_view('b', 'a'), _view('a', 'users')]
        self.assertEqual([v.name for v in sort_views_by_dependency(views)], ['a', 'b'])

    def test_chain(self):
        views = [_view('c', 'b'), _view('b', 'a'), _view('a')]
        self.assertEqual([v.name for v in sort_views_by_dependency(views)], ['a', 'b', 'c'])

    def test_independent_views_keep_order(self):
        views = [_view('x', 'users'), _view('y', 'orders')]
        self.assertEqual([v.name for v in sort_views_by_dependency(views)], ['x', 'y'])

    def test_cycle_keeps_input_order(self):
        views = [_view('b', 'a'), _view('a', 'b'), _view('c')]
        with self.assertLogs('core.view_resolver', level='WARNING'):
            ordered = sort_views_by_dependency(views)
        self.assertEqual([v.name for v in ordered], ['b', 'a', 'c'])

    def test_self_reference_is_a_cycle(self):
        views = [_view('z'), _view('a', 'a')]
        with self.assertLogs('core.view_resolver', level='WARNING'):
            ordered = sort_views_by_dependency(views)
        self.assertEqual([v.name for v in ordered], ['z', 'a'])

    def test_empty(self):
        self.assertEqual(sort_views_by_dependency([]), [])


if __name__ == '__main__':
    unittest.main()
