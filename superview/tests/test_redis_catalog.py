# superview/tests/test_redis_catalog.py
"""
RedisCatalog operations against an in-memory FakeRedis.

Covers projects, sources, views and the name index, role grants,
authorization value sets and the simple token lock.
"""

import unittest

import pytest

from superview.data_classes import RoleViewGrant, Source, SqlVariable
from superview.redis_catalog import RedisCatalog


class TestRedisCatalog(unittest.TestCase):

    @pytest.fixture(autouse=True)
    def _fake_redis(self, fake_redis):
        self.r = fake_redis
        self.catalog = RedisCatalog(client=self.r)

    # -------------------------------------------------------------------------
    # Projects / sources
    # -------------------------------------------------------------------------

    def test_project_round_trip(self):
        self.catalog.put_project(1, {"name": "p", "creator_id": 5})
        doc = self.catalog.get_project(1)
        self.assertEqual(doc["name"], "p")
        self.assertEqual(doc["id"], 1)
        self.assertIn("updated_ms", doc)
        self.assertIsNone(self.catalog.get_project(2))

    def test_source_round_trip(self):
        src = Source(id=3, project_id=1, url="duckdb://:memory:", username="u", password="p", name="local")
        self.catalog.put_source(src)
        self.assertEqual(self.catalog.get_source(3), src)
        self.assertIsNone(self.catalog.get_source(4))

    def test_corrupt_document_reads_as_missing(self):
        self.r.set("superview:meta:project:9", "{oops")
        self.assertIsNone(self.catalog.get_project(9))

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def test_view_with_source(self):
        src = Source(id=3, project_id=1, url="duckdb://:memory:")
        self.catalog.put_source(src)
        variables = [SqlVariable(name="dept", type="auth", default_values=["a"])]
        self.catalog.put_view(10, 1, "sales", "SELECT 1", 3, variables)
        view = self.catalog.get_view_with_source(10)
        self.assertEqual(view.name, "sales")
        self.assertEqual(view.sql, "SELECT 1")
        self.assertEqual(view.variables, variables)
        self.assertEqual(view.source, src)
        self.assertIsNone(self.catalog.get_view_with_source(11))

    def test_view_without_source(self):
        self.catalog.put_view(10, 1, "sales", "SELECT 1", None)
        self.assertIsNone(self.catalog.get_view_with_source(10).source)

    def test_name_index_follows_rename(self):
        self.catalog.put_view(10, 1, "old", "SELECT 1", None)
        self.assertEqual(self.catalog.get_view_id_by_name("old", 1), 10)
        self.catalog.put_view(10, 1, "new", "SELECT 1", None)
        self.assertIsNone(self.catalog.get_view_id_by_name("old", 1))
        self.assertEqual(self.catalog.get_view_id_by_name("new", 1), 10)
        self.assertIsNone(self.catalog.get_view_id_by_name("new", 2))

    # -------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------

    def test_grants_by_user_and_view(self):
        self.catalog.add_user_role(7, 1)
        self.catalog.add_user_role(7, 2)
        self.catalog.put_grants(10, [
            RoleViewGrant(role_id=1, view_id=10, row_auth='[{"name":"dept","values":["a"]}]'),
            RoleViewGrant(role_id=3, view_id=10, column_auth="salary"),
        ])
        grants = self.catalog.get_grants_by_user_and_view(7, 10)
        self.assertEqual(grants, [
            RoleViewGrant(role_id=1, view_id=10, row_auth='[{"name":"dept","values":["a"]}]', column_auth=None),
        ])
        self.assertEqual(self.catalog.get_grants_by_user_and_view(8, 10), [])

    def test_delete_grants(self):
        self.catalog.add_user_role(7, 1)
        self.assertEqual(self.catalog.put_grants(10, [RoleViewGrant(role_id=1, view_id=10, column_auth="x")]), 1)
        self.catalog.delete_grants(10)
        self.assertEqual(self.catalog.get_grants_by_user_and_view(7, 10), [])

    # -------------------------------------------------------------------------
    # Authorization values
    # -------------------------------------------------------------------------

    def test_auth_values_replace(self):
        self.catalog.set_auth_values("dept", ["b", "a"])
        self.assertEqual(self.catalog.get_auth_values("dept"), ["a", "b"])
        self.catalog.set_auth_values("dept", ["c"])
        self.assertEqual(self.catalog.get_auth_values("dept"), ["c"])
        self.catalog.set_auth_values("dept", [])
        self.assertIsNone(self.catalog.get_auth_values("dept"))

    # -------------------------------------------------------------------------
    # Locks
    # -------------------------------------------------------------------------

    def test_lock_is_exclusive_until_released(self):
        token = self.catalog.acquire_simple_lock("res", ttl_s=5, timeout_s=1)
        self.assertIsNotNone(token)
        self.assertIsNone(self.catalog.acquire_simple_lock("res", ttl_s=5, timeout_s=1))
        self.assertFalse(self.catalog.release_simple_lock("res", "wrong-token"))
        self.assertTrue(self.catalog.release_simple_lock("res", token))
        self.assertIsNotNone(self.catalog.acquire_simple_lock("res", ttl_s=5, timeout_s=1))

    def test_lock_expires(self):
        self.assertIsNotNone(self.catalog.acquire_simple_lock("res", ttl_s=5, timeout_s=1))
        self.r.advance(6)
        self.assertIsNotNone(self.catalog.acquire_simple_lock("res", ttl_s=5, timeout_s=1))
