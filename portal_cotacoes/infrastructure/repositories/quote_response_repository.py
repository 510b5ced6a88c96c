from __future__ import annotations

import json
from typing import Any, Dict, List

from portal_cotacoes.infrastructure.repositories.base import BaseRepository


def _decode_items(row: Dict[str, Any]) -> Dict[str, Any]:
    raw = row.get("items")
    if isinstance(raw, str):
        try:
            row["items"] = json.loads(raw or "[]")
        except ValueError:
            row["items"] = []
    elif raw is None:
        row["items"] = []
    return row


class QuoteResponseRepository(BaseRepository):
    def get_by_id(self, db, response_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quote_responses
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (response_id, self.tenant_id),
        ).fetchone()
        return _decode_items(dict(row)) if row else None

    def find_for_supplier(self, db, quote_id: int, supplier_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quote_responses
            WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, supplier_id, self.tenant_id),
        ).fetchone()
        return _decode_items(dict(row)) if row else None

    def list_for_quote(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quote_responses
            WHERE quote_id = ? AND tenant_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return [_decode_items(dict(row)) for row in rows]

    def count_for_quote(self, db, quote_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM quote_responses WHERE quote_id = ? AND tenant_id = ?",
            (quote_id, self.tenant_id),
        ).fetchone()
        return int(row["total"] if row else 0)

    def has_sent_response(self, db, quote_id: int) -> bool:
        row = db.execute(
            """
            SELECT 1
            FROM quote_responses
            WHERE quote_id = ? AND tenant_id = ? AND status = 'sent'
            LIMIT 1
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        return row is not None

    def upsert(
        self,
        db,
        *,
        quote_id: int,
        supplier_id: int,
        supplier_name: str | None,
        items: List[Dict[str, Any]],
        total_amount: float,
        delivery_time: int | None,
        payment_terms: str | None,
        shipping_cost: float,
        warranty_months: int | None,
        notes: str | None,
        status: str,
        sent_at: str | None,
    ) -> int | None:
        """Insert or update the (quote, supplier) response in one statement.

        Returns the row id, or ``None`` when a stored response exists and is no
        longer editable; in that case nothing is written.
        """
        cursor = db.execute(
            """
            INSERT INTO quote_responses (
                quote_id, supplier_id, supplier_name, items, total_amount, delivery_time,
                payment_terms, shipping_cost, warranty_months, notes, status, sent_at, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (quote_id, supplier_id, tenant_id) DO UPDATE SET
                supplier_name = COALESCE(excluded.supplier_name, quote_responses.supplier_name),
                items = excluded.items,
                total_amount = excluded.total_amount,
                delivery_time = excluded.delivery_time,
                payment_terms = excluded.payment_terms,
                shipping_cost = excluded.shipping_cost,
                warranty_months = excluded.warranty_months,
                notes = excluded.notes,
                status = excluded.status,
                sent_at = excluded.sent_at,
                updated_at = CURRENT_TIMESTAMP
            WHERE quote_responses.status IN ('draft', 'pending')
            RETURNING id
            """,
            (
                quote_id,
                supplier_id,
                supplier_name,
                json.dumps(items, ensure_ascii=True),
                total_amount,
                delivery_time,
                payment_terms,
                shipping_cost,
                warranty_months,
                notes,
                status,
                sent_at,
                self.tenant_id,
            ),
        )
        return self.returned_id(cursor)

    def expire_editable_for_quote(self, db, quote_id: int) -> list[int]:
        rows = db.execute(
            """
            SELECT id
            FROM quote_responses
            WHERE quote_id = ? AND tenant_id = ? AND status IN ('draft', 'pending')
            ORDER BY id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        expired: list[int] = []
        for row in rows:
            cursor = db.execute(
                """
                UPDATE quote_responses
                SET status = 'expired', updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND tenant_id = ? AND status IN ('draft', 'pending')
                """,
                (row["id"], self.tenant_id),
            )
            if int(cursor.rowcount or 0) > 0:
                expired.append(int(row["id"]))
        return expired
