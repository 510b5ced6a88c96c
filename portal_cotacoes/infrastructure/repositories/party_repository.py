from __future__ import annotations

from portal_cotacoes.infrastructure.repositories.base import BaseRepository


class _PartyRepository(BaseRepository):
    table = ""

    def get_by_id(self, db, party_id: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT id, name, email, tenant_id
            FROM {self.table}
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (party_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def get_by_email(self, db, email: str) -> dict | None:
        normalized = str(email or "").strip().lower()
        if not normalized:
            return None
        row = db.execute(
            f"""
            SELECT id, name, email, tenant_id
            FROM {self.table}
            WHERE LOWER(email) = ? AND tenant_id = ?
            ORDER BY id ASC
            LIMIT 1
            """,
            (normalized, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def create(self, db, *, name: str, email: str | None = None) -> int:
        cursor = db.execute(
            f"""
            INSERT INTO {self.table} (name, email, tenant_id)
            VALUES (?, ?, ?)
            RETURNING id
            """,
            (name, email, self.tenant_id),
        )
        return int(self.returned_id(cursor))


class SupplierRepository(_PartyRepository):
    table = "suppliers"


class ClientRepository(_PartyRepository):
    table = "clients"
