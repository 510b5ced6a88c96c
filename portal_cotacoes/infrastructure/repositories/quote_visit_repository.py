from __future__ import annotations

from portal_cotacoes.infrastructure.repositories.base import BaseRepository


class QuoteVisitRepository(BaseRepository):
    def get_by_id(self, db, visit_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quote_visits
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (visit_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def list_for_supplier(self, db, quote_id: int, supplier_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quote_visits
            WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (quote_id, supplier_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_by_supplier(self, db, supplier_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, quote_id, supplier_id, scheduled_date, status
            FROM quote_visits
            WHERE supplier_id = ? AND tenant_id = ?
            ORDER BY quote_id ASC, id ASC
            """,
            (supplier_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_quote(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quote_visits
            WHERE quote_id = ? AND tenant_id = ?
            ORDER BY scheduled_date ASC, id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_by_status(self, db, status: str) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, quote_id, supplier_id, scheduled_date, status
            FROM quote_visits
            WHERE status = ? AND tenant_id = ?
            ORDER BY scheduled_date ASC, id ASC
            """,
            (status, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(
        self,
        db,
        *,
        quote_id: int,
        supplier_id: int,
        client_id: int | None,
        scheduled_date: str,
        notes: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quote_visits (
                quote_id, supplier_id, client_id, scheduled_date, requested_date, status, notes, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, 'scheduled', ?, ?)
            RETURNING id
            """,
            (quote_id, supplier_id, client_id, scheduled_date, scheduled_date, notes, self.tenant_id),
        )
        return int(self.returned_id(cursor))

    def reschedule(self, db, visit_id: int, *, scheduled_date: str, reason: str | None) -> bool:
        cursor = db.execute(
            """
            UPDATE quote_visits
            SET previous_date = scheduled_date,
                scheduled_date = ?,
                status = 'scheduled',
                reschedule_count = reschedule_count + 1,
                reschedule_reason = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = 'overdue'
            """,
            (scheduled_date, reason, visit_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) > 0

    def confirm(
        self,
        db,
        visit_id: int,
        *,
        confirmed_date: str,
        confirmed_by: str | None,
        notes: str | None,
    ) -> bool:
        cursor = db.execute(
            """
            UPDATE quote_visits
            SET status = 'confirmed',
                confirmed_date = ?,
                confirmed_by = ?,
                confirmation_notes = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = 'scheduled'
            """,
            (confirmed_date, confirmed_by, notes, visit_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) > 0

    def mark_overdue(self, db, visit_id: int) -> bool:
        cursor = db.execute(
            """
            UPDATE quote_visits
            SET status = 'overdue', updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = 'scheduled'
            """,
            (visit_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) > 0
