from __future__ import annotations

import re
from typing import Any, Iterable

from portal_cotacoes.infrastructure.repositories.base import BaseRepository


LOCAL_CODE_PREFIX = "COT-"
_LOCAL_CODE_DIGITS = re.compile(r"(\d+)$")

def format_local_code(sequence: int) -> str:
    return f"{LOCAL_CODE_PREFIX}{int(sequence):04d}"


def parse_local_code(value: str | None) -> int:
    match = _LOCAL_CODE_DIGITS.search(str(value or "").strip())
    return int(match.group(1)) if match else 0


class QuoteRepository(BaseRepository):
    def get_by_id(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def list_for_client(self, db, client_id: int | None = None, status: str | None = None) -> list[dict]:
        clauses = ["tenant_id = ?"]
        params: list[Any] = [self.tenant_id]
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        rows = db.execute(
            f"""
            SELECT *
            FROM quotes
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, id DESC
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def next_local_code(self, db, client_id: int) -> str:
        rows = db.execute(
            """
            SELECT local_code
            FROM quotes
            WHERE client_id = ? AND tenant_id = ?
            """,
            (client_id, self.tenant_id),
        ).fetchall()
        current = max((parse_local_code(row["local_code"]) for row in rows), default=0)
        return format_local_code(current + 1)

    def create(
        self,
        db,
        *,
        client_id: int,
        local_code: str,
        title: str,
        description: str | None,
        deadline: str | None,
        total: float,
        status: str,
        supplier_scope: str,
        supplier_id: int | None,
        requires_visit: bool,
        visit_deadline: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotes (
                local_code, client_id, title, description, deadline, total, status,
                supplier_scope, supplier_id, requires_visit, visit_deadline, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                local_code,
                client_id,
                title,
                description,
                deadline,
                total,
                status,
                supplier_scope,
                supplier_id,
                bool(requires_visit),
                visit_deadline,
                self.tenant_id,
            ),
        )
        return int(self.returned_id(cursor))

    def add_item(self, db, quote_id: int, *, product_name: str, quantity: float, unit_price: float) -> int:
        cursor = db.execute(
            """
            INSERT INTO quote_items (quote_id, product_name, quantity, unit_price, total, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (quote_id, product_name, quantity, unit_price, round(quantity * unit_price, 2), self.tenant_id),
        )
        return int(self.returned_id(cursor))

    def list_items(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, quote_id, product_name, quantity, unit_price, total
            FROM quote_items
            WHERE quote_id = ? AND tenant_id = ?
            ORDER BY id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def assign_suppliers(self, db, quote_id: int, supplier_ids: Iterable[int]) -> int:
        assigned = 0
        for supplier_id in supplier_ids:
            cursor = db.execute(
                """
                INSERT INTO quote_suppliers (quote_id, supplier_id, tenant_id)
                VALUES (?, ?, ?)
                ON CONFLICT (quote_id, supplier_id, tenant_id) DO NOTHING
                """,
                (quote_id, supplier_id, self.tenant_id),
            )
            assigned += max(0, int(cursor.rowcount or 0))
        return assigned

    def is_assigned(self, db, quote_id: int, supplier_id: int) -> bool:
        row = db.execute(
            """
            SELECT 1
            FROM quote_suppliers
            WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, supplier_id, self.tenant_id),
        ).fetchone()
        return row is not None

    def list_visible_to_supplier(self, db, supplier_id: int) -> list[dict]:
        """Quotes a supplier may see, with the supplier's own response joined in.

        Visibility: an own response, an assignment row, or an open quote whose
        scope admits any supplier. Suppliers outside the workspace see nothing.
        """
        rows = db.execute(
            """
            SELECT
                q.*,
                r.id AS response_id,
                r.status AS response_status,
                r.total_amount AS response_total_amount,
                r.sent_at AS response_sent_at
            FROM quotes q
            LEFT JOIN quote_responses r
              ON r.quote_id = q.id AND r.supplier_id = ? AND r.tenant_id = q.tenant_id
            WHERE q.tenant_id = ?
              AND EXISTS (SELECT 1 FROM suppliers s WHERE s.id = ? AND s.tenant_id = q.tenant_id)
              AND (
                r.id IS NOT NULL
                OR (
                    q.status IN ('sent', 'receiving')
                    AND (
                        q.supplier_scope IN ('global', 'all')
                        OR (q.supplier_scope = 'local' AND q.supplier_id IS NULL)
                    )
                )
                OR EXISTS (
                    SELECT 1
                    FROM quote_suppliers qs
                    WHERE qs.quote_id = q.id AND qs.supplier_id = ? AND qs.tenant_id = q.tenant_id
                )
              )
            ORDER BY q.created_at DESC, q.id DESC
            """,
            (supplier_id, self.tenant_id, supplier_id, supplier_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def advance_status(self, db, quote_id: int, *, from_statuses: Iterable[str], to_status: str) -> bool:
        """Guarded transition: applies only while the quote is in ``from_statuses``."""
        sources = tuple(from_statuses)
        cursor = db.execute(
            f"""
            UPDATE quotes
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status IN ({self.placeholders(sources)})
            """,
            (to_status, quote_id, self.tenant_id, *sources),
        )
        return int(cursor.rowcount or 0) > 0

    def list_with_deadline(self, db, statuses: Iterable[str]) -> list[dict]:
        sources = tuple(statuses)
        rows = db.execute(
            f"""
            SELECT id, status, deadline, client_id
            FROM quotes
            WHERE tenant_id = ? AND deadline IS NOT NULL AND status IN ({self.placeholders(sources)})
            ORDER BY id ASC
            """,
            (self.tenant_id, *sources),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_sent_with_sent_responses(self, db) -> list[int]:
        rows = db.execute(
            """
            SELECT q.id
            FROM quotes q
            WHERE q.tenant_id = ?
              AND q.status = 'sent'
              AND EXISTS (
                SELECT 1
                FROM quote_responses r
                WHERE r.quote_id = q.id AND r.tenant_id = q.tenant_id AND r.status = 'sent'
              )
            ORDER BY q.id ASC
            """,
            (self.tenant_id,),
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def delete_quote(self, db, quote_id: int) -> None:
        for table in ("quote_items", "quote_suppliers", "quote_visits"):
            db.execute(f"DELETE FROM {table} WHERE quote_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        db.execute("DELETE FROM quotes WHERE id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
