import unittest

from portal_cotacoes import create_app
from portal_cotacoes.config import Config
from portal_cotacoes.db import close_db, get_db
from portal_cotacoes.infrastructure.repositories import (
    QuoteRepository,
    QuoteResponseRepository,
    TenantScopeRequiredError,
)
from portal_cotacoes.infrastructure.repositories.quote_repository import format_local_code, parse_local_code
from tests.helpers.temp_db import TempDbSandbox
from tests.quote_utils import seed_workspace


def _create_quote(db, repo: QuoteRepository, client_id: int, *, status: str = "sent") -> int:
    return repo.create(
        db,
        client_id=client_id,
        local_code=repo.next_local_code(db, client_id),
        title="Cotacao",
        description=None,
        deadline=None,
        total=0.0,
        status=status,
        supplier_scope="all",
        supplier_id=None,
        requires_visit=False,
        visit_deadline=None,
    )


def _upsert(db, repo: QuoteResponseRepository, quote_id: int, supplier_id: int, *, status: str, total: float):
    return repo.upsert(
        db,
        quote_id=quote_id,
        supplier_id=supplier_id,
        supplier_name=None,
        items=[{"product_name": "Tinta", "quantity": 1, "unit_price": total}],
        total_amount=total,
        delivery_time=7,
        payment_terms="30 dias",
        shipping_cost=0.0,
        warranty_months=12,
        notes=None,
        status=status,
        sent_at=None,
    )


class _RepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="repo_scope")
        self.addCleanup(self._temp_db.cleanup)
        self.app = create_app(self._temp_db.make_config(Config))
        ctx = self.app.app_context()
        ctx.push()
        self.addCleanup(ctx.pop)
        self.addCleanup(close_db)
        self.db = get_db()
        self.alpha = seed_workspace(self.db, "tenant-a")
        self.beta = seed_workspace(self.db, "tenant-b")


class QuoteRepositoryTenantScopeTest(_RepositoryTestCase):
    def test_repository_requires_tenant_scope(self) -> None:
        with self.assertRaises(TenantScopeRequiredError):
            QuoteRepository()
        with self.assertRaises(TenantScopeRequiredError):
            QuoteResponseRepository(tenant_id="   ")

    def test_quote_repository_isolates_tenant_data(self) -> None:
        repo_a = QuoteRepository(tenant_id="tenant-a")
        repo_b = QuoteRepository(tenant_id="tenant-b")
        a_id = _create_quote(self.db, repo_a, self.alpha["client_id"])
        b_id = _create_quote(self.db, repo_b, self.beta["client_id"])
        self.db.commit()

        self.assertEqual([row["id"] for row in repo_a.list_for_client(self.db)], [a_id])
        self.assertEqual([row["id"] for row in repo_b.list_for_client(self.db)], [b_id])
        self.assertIsNone(repo_a.get_by_id(self.db, b_id))
        self.assertIsNone(repo_b.get_by_id(self.db, a_id))
        self.assertFalse(repo_a.advance_status(self.db, b_id, from_statuses=("sent",), to_status="receiving"))

        supplier_b = self.beta["supplier_ids"][0]
        self.assertEqual(repo_a.list_visible_to_supplier(self.db, supplier_b), [])
        self.assertEqual(repo_a.list_visible_to_supplier(self.db, 999999), [])
        supplier_a = self.alpha["supplier_ids"][0]
        self.assertEqual([row["id"] for row in repo_a.list_visible_to_supplier(self.db, supplier_a)], [a_id])

    def test_local_codes_are_sequential_per_client(self) -> None:
        repo = QuoteRepository(tenant_id="tenant-a")
        _create_quote(self.db, repo, self.alpha["client_id"])
        _create_quote(self.db, repo, self.alpha["client_id"])

        self.assertEqual(repo.next_local_code(self.db, self.alpha["client_id"]), "COT-0003")
        self.assertEqual(format_local_code(12), "COT-0012")
        self.assertEqual(parse_local_code("COT-0042"), 42)
        self.assertEqual(parse_local_code(None), 0)

    def test_guarded_advance_only_from_listed_statuses(self) -> None:
        repo = QuoteRepository(tenant_id="tenant-a")
        quote_id = _create_quote(self.db, repo, self.alpha["client_id"], status="draft")

        self.assertFalse(repo.advance_status(self.db, quote_id, from_statuses=("sent",), to_status="receiving"))
        self.assertTrue(repo.advance_status(self.db, quote_id, from_statuses=("draft",), to_status="sent"))
        self.assertEqual(repo.get_by_id(self.db, quote_id)["status"], "sent")


class QuoteResponseUpsertTest(_RepositoryTestCase):
    def test_upsert_updates_editable_row_in_place(self) -> None:
        quote_id = _create_quote(self.db, QuoteRepository(tenant_id="tenant-a"), self.alpha["client_id"])
        repo = QuoteResponseRepository(tenant_id="tenant-a")
        supplier_id = self.alpha["supplier_ids"][0]

        first = _upsert(self.db, repo, quote_id, supplier_id, status="draft", total=10.0)
        second = _upsert(self.db, repo, quote_id, supplier_id, status="draft", total=20.0)

        self.assertEqual(first, second)
        self.assertEqual(repo.count_for_quote(self.db, quote_id), 1)
        stored = repo.find_for_supplier(self.db, quote_id, supplier_id)
        self.assertEqual(stored["total_amount"], 20.0)
        self.assertEqual(stored["items"][0]["product_name"], "Tinta")

    def test_upsert_leaves_sent_row_untouched(self) -> None:
        quote_id = _create_quote(self.db, QuoteRepository(tenant_id="tenant-a"), self.alpha["client_id"])
        repo = QuoteResponseRepository(tenant_id="tenant-a")
        supplier_id = self.alpha["supplier_ids"][0]
        _upsert(self.db, repo, quote_id, supplier_id, status="sent", total=10.0)

        locked = _upsert(self.db, repo, quote_id, supplier_id, status="draft", total=99.0)

        self.assertIsNone(locked)
        stored = repo.find_for_supplier(self.db, quote_id, supplier_id)
        self.assertEqual((stored["status"], stored["total_amount"]), ("sent", 10.0))
        self.assertTrue(repo.has_sent_response(self.db, quote_id))

    def test_expire_editable_skips_sent_rows(self) -> None:
        quote_id = _create_quote(self.db, QuoteRepository(tenant_id="tenant-a"), self.alpha["client_id"])
        repo = QuoteResponseRepository(tenant_id="tenant-a")
        first, second = self.alpha["supplier_ids"]
        _upsert(self.db, repo, quote_id, first, status="sent", total=10.0)
        draft_id = _upsert(self.db, repo, quote_id, second, status="draft", total=10.0)

        self.assertEqual(repo.expire_editable_for_quote(self.db, quote_id), [draft_id])
        self.assertEqual(repo.expire_editable_for_quote(self.db, quote_id), [])


if __name__ == "__main__":
    unittest.main()
