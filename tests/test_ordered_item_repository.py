import unittest

from zen_platform import create_app
from zen_platform.config import Config
from zen_platform.contexts.ordering.domain.collections import get_collection
from zen_platform.contexts.ordering.infrastructure.ordered_item_repository import OrderedItemRepository
from zen_platform.db import close_db, get_db
from zen_platform.infrastructure.repositories import TenantScopeRequiredError
from tests.helpers.temp_db import TempDbSandbox


class OrderedItemRepositoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="repo_scope")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True))
        self.plans = get_collection("plans")

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_repository_requires_tenant_scope(self) -> None:
        with self.assertRaises(TenantScopeRequiredError):
            OrderedItemRepository(self.plans)

    def test_repository_isolates_tenant_data(self) -> None:
        with self.app.app_context():
            db = get_db()
            repo_a = OrderedItemRepository(self.plans, tenant_id="tenant-a")
            repo_b = OrderedItemRepository(self.plans, tenant_id="tenant-b")

            a_id = repo_a.create(db, name="Plano A", rank=1)
            b_id = repo_b.create(db, name="Plano B", rank=1)

            self.assertEqual([row["id"] for row in repo_a.find_many(db, repo_a.scope())], [a_id])
            self.assertEqual([row["id"] for row in repo_b.find_many(db, repo_b.scope())], [b_id])
            self.assertIsNone(repo_a.get_by_id(db, b_id))
            self.assertEqual(repo_a.update_rank(db, b_id, 5, expected_rank=1), 0)
            self.assertEqual(repo_b.get_by_id(db, b_id)["orden"], 1)

    def test_expected_rank_guard(self) -> None:
        with self.app.app_context():
            db = get_db()
            repo = OrderedItemRepository(self.plans, tenant_id="tenant-a")
            item_id = repo.create(db, name="Sem ordem", rank=None)

            self.assertEqual(repo.update_rank(db, item_id, 1, expected_rank=3), 0)
            self.assertEqual(repo.update_rank(db, item_id, 1, expected_rank=None), 1)
            self.assertEqual(repo.update_rank(db, item_id, 2, expected_rank=1), 1)
            self.assertEqual(repo.update_rank(db, item_id, 7, check=False), 1)
            self.assertEqual(repo.get_by_id(db, item_id)["orden"], 7)

    def test_count_ignores_inactive_rows(self) -> None:
        with self.app.app_context():
            db = get_db()
            repo = OrderedItemRepository(self.plans, tenant_id="tenant-a")
            scope = repo.scope()
            self.assertEqual(repo.count(db, scope), 0)

            kept = repo.create(db, name="Ativo", rank=1)
            removed = repo.create(db, name="Removido", rank=2)
            self.assertEqual(repo.deactivate(db, removed), 1)
            self.assertEqual(repo.deactivate(db, removed), 0)

            self.assertEqual(repo.count(db, scope), 1)
            self.assertEqual([item.id for item in repo.find_ranked(db, scope)], [kept])

    def test_id_exists_looks_across_tenants(self) -> None:
        with self.app.app_context():
            db = get_db()
            owner = OrderedItemRepository(self.plans, tenant_id="tenant-a")
            other = OrderedItemRepository(self.plans, tenant_id="tenant-b")
            owner.create(db, name="Basico", rank=1, item_id="plan-x")

            self.assertTrue(other.id_exists(db, "plan-x"))
            self.assertIsNone(other.get_by_id(db, "plan-x"))
            self.assertFalse(other.id_exists(db, "plan-y"))

    def test_parent_lookup_for_grouped_collection(self) -> None:
        with self.app.app_context():
            db = get_db()
            sections = OrderedItemRepository(get_collection("catalog_sections"), tenant_id="tenant-a")
            categories = OrderedItemRepository(get_collection("catalog_categories"), tenant_id="tenant-a")
            foreign = OrderedItemRepository(get_collection("catalog_categories"), tenant_id="tenant-b")

            second = sections.create(db, name="Unhas", rank=2)
            first = sections.create(db, name="Cabelo", rank=1)

            self.assertTrue(categories.parent_exists(db, first))
            self.assertFalse(foreign.parent_exists(db, first))
            self.assertFalse(categories.parent_exists(db, None))
            self.assertEqual(categories.parent_ids(db), [first, second])

            category_id = categories.create(db, name="Corte", rank=1, parent_id=first)
            row = categories.get_by_id(db, category_id)
            self.assertEqual(categories.scope_of(row).parent_id, first)


if __name__ == "__main__":
    unittest.main()
