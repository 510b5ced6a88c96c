from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime, timezone

import click
from flask import Flask, current_app

from portal_cotacoes.db import close_db, get_db
from portal_cotacoes.domain.contracts import SweepReport
from portal_cotacoes.infrastructure.repositories import (
    QuoteRepository,
    QuoteResponseRepository,
    QuoteVisitRepository,
    StatusEventRepository,
)
from portal_cotacoes.observability import observe_lifecycle_sweep
from portal_cotacoes.quotes.cache import KeyedTTLCache
from portal_cotacoes.quotes.lifecycle import QUOTE_OPEN_STATUSES, deadline_passed, visit_overdue


logger = logging.getLogger("portal_cotacoes.sweep")


def run_lifecycle_sweep(
    db,
    tenant_id: str,
    *,
    now: datetime | None = None,
    overdue_grace_hours: int = 24,
    cache: KeyedTTLCache | None = None,
) -> SweepReport:
    """Apply time-driven transitions for one tenant and commit them.

    - scheduled visits past their date (plus grace) become ``overdue``;
    - open quotes past their deadline expire their editable responses, and a
      quote still ``sent`` without any sent response expires too;
    - quotes still ``sent`` that own a sent response move to ``receiving``.
    """
    now = now or datetime.now(timezone.utc)
    quote_repo = QuoteRepository(tenant_id=tenant_id)
    response_repo = QuoteResponseRepository(tenant_id=tenant_id)
    visit_repo = QuoteVisitRepository(tenant_id=tenant_id)
    events = StatusEventRepository(tenant_id=tenant_id)

    visits_overdue = 0
    for visit in visit_repo.list_by_status(db, "scheduled"):
        if not visit_overdue(visit, now, overdue_grace_hours):
            continue
        if visit_repo.mark_overdue(db, int(visit["id"])):
            events.add_event(
                db,
                entity="quote_visit",
                entity_id=int(visit["id"]),
                from_status="scheduled",
                to_status="overdue",
                reason="visit_date_passed",
            )
            visits_overdue += 1

    # Reconcile first so a quote with a sent proposal is never expired.
    quotes_reconciled = 0
    for quote_id in quote_repo.list_sent_with_sent_responses(db):
        if quote_repo.advance_status(db, quote_id, from_statuses=("sent",), to_status="receiving"):
            events.add_event(
                db,
                entity="quote",
                entity_id=quote_id,
                from_status="sent",
                to_status="receiving",
                reason="reconciled_sent_response",
            )
            quotes_reconciled += 1

    responses_expired = 0
    quotes_expired = 0
    for quote in quote_repo.list_with_deadline(db, sorted(QUOTE_OPEN_STATUSES)):
        if not deadline_passed(quote["deadline"], now):
            continue
        quote_id = int(quote["id"])
        for response_id in response_repo.expire_editable_for_quote(db, quote_id):
            events.add_event(
                db,
                entity="quote_response",
                entity_id=response_id,
                from_status=None,
                to_status="expired",
                reason="quote_deadline_passed",
            )
            responses_expired += 1
        if quote["status"] != "sent" or response_repo.has_sent_response(db, quote_id):
            continue
        if quote_repo.advance_status(db, quote_id, from_statuses=("sent",), to_status="expired"):
            events.add_event(
                db,
                entity="quote",
                entity_id=quote_id,
                from_status="sent",
                to_status="expired",
                reason="quote_deadline_passed",
            )
            quotes_expired += 1

    db.commit()
    report = SweepReport(
        tenant_id=tenant_id,
        visits_overdue=visits_overdue,
        responses_expired=responses_expired,
        quotes_expired=quotes_expired,
        quotes_reconciled=quotes_reconciled,
    )
    if cache is not None and report.total_transitions:
        cache.invalidate(tenant_id)
    return report


def sweep_tenant(
    db,
    tenant_id: str,
    *,
    now: datetime | None = None,
    overdue_grace_hours: int = 24,
    cache: KeyedTTLCache | None = None,
) -> SweepReport:
    started = time.perf_counter()
    try:
        report = run_lifecycle_sweep(
            db,
            tenant_id,
            now=now,
            overdue_grace_hours=overdue_grace_hours,
            cache=cache,
        )
    except Exception:
        db.rollback()
        observe_lifecycle_sweep("failed", (time.perf_counter() - started) * 1000.0)
        logger.exception("lifecycle_sweep_failed", extra={"tenant_id": tenant_id})
        raise

    observe_lifecycle_sweep(
        "succeeded",
        (time.perf_counter() - started) * 1000.0,
        transitions={key: value for key, value in report.as_dict().items() if key != "tenant_id"},
    )
    if report.total_transitions:
        logger.info("lifecycle_sweep_applied", extra=report.as_dict())
    return report


def list_sweep_tenants(db) -> list[str]:
    rows = db.execute(
        """
        SELECT id AS tenant_id FROM tenants
        UNION
        SELECT DISTINCT tenant_id FROM quotes
        ORDER BY tenant_id
        """
    ).fetchall()
    return [str(row["tenant_id"]) for row in rows if row["tenant_id"]]


def _app_cache(app: Flask) -> KeyedTTLCache | None:
    service = app.extensions.get("quote_service")
    return getattr(service, "cache", None)


class LifecycleScheduler:
    def __init__(self, app: Flask) -> None:
        self.app = app
        self.interval_seconds = _int_config(app, "LIFECYCLE_SWEEP_INTERVAL_SECONDS", 300, 10, 86_400)
        self.min_backoff_seconds = _int_config(app, "LIFECYCLE_SWEEP_MIN_BACKOFF_SECONDS", 30, 5, 3600)
        self.max_backoff_seconds = _int_config(
            app,
            "LIFECYCLE_SWEEP_MAX_BACKOFF_SECONDS",
            1800,
            self.min_backoff_seconds,
            86_400,
        )
        self.overdue_grace_hours = _int_config(app, "VISIT_OVERDUE_GRACE_HOURS", 24, 0, 24 * 30)

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._failure_counts: dict[str, int] = {}
        self._next_run_at: dict[str, float] = {}

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="lifecycle-sweep", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> list[SweepReport]:
        reports: list[SweepReport] = []
        with self.app.app_context():
            db = get_db()
            try:
                for tenant_id in list_sweep_tenants(db):
                    report = self._run_tenant(db, tenant_id)
                    if report is not None:
                        reports.append(report)
            finally:
                close_db()
        return reports

    def _run_tenant(self, db, tenant_id: str) -> SweepReport | None:
        if not self._is_due(tenant_id):
            return None
        try:
            report = sweep_tenant(
                db,
                tenant_id,
                overdue_grace_hours=self.overdue_grace_hours,
                cache=_app_cache(self.app),
            )
        except Exception:  # noqa: BLE001
            self._register_failure(tenant_id)
            return None
        self._clear_backoff(tenant_id)
        return report

    def _is_due(self, key: str) -> bool:
        next_run_at = self._next_run_at.get(key)
        if next_run_at is None:
            return True
        return time.monotonic() >= next_run_at

    def _clear_backoff(self, key: str) -> None:
        self._failure_counts.pop(key, None)
        self._next_run_at.pop(key, None)

    def _register_failure(self, key: str) -> None:
        failure_count = self._failure_counts.get(key, 0) + 1
        self._failure_counts[key] = failure_count
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.min_backoff_seconds * (2 ** (failure_count - 1)),
        )
        self._next_run_at[key] = time.monotonic() + backoff_seconds


def start_lifecycle_scheduler(app: Flask) -> LifecycleScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = LifecycleScheduler(app)
    scheduler.start()
    app.extensions["lifecycle_scheduler"] = scheduler
    app.logger.info(
        "Lifecycle sweep started: interval=%ss grace=%sh",
        scheduler.interval_seconds,
        scheduler.overdue_grace_hours,
    )
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("LIFECYCLE_SWEEP_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))


def register_sweep_cli(app: Flask) -> None:
    @app.cli.group("cotacoes")
    def cotacoes_group() -> None:
        """Rotinas do ciclo de vida das cotacoes."""

    @cotacoes_group.command("sweep")
    @click.option("--tenant", "tenant_id", default=None, help="Restringe a varredura a um workspace.")
    def sweep_command(tenant_id: str | None) -> None:
        db = get_db()
        tenant_ids = [tenant_id] if tenant_id else list_sweep_tenants(db)
        grace = _int_config(current_app, "VISIT_OVERDUE_GRACE_HOURS", 24, 0, 24 * 30)
        for tenant in tenant_ids:
            report = sweep_tenant(db, tenant, overdue_grace_hours=grace, cache=_app_cache(current_app))
            click.echo(
                f"{tenant}: visitas_atrasadas={report.visits_overdue} "
                f"propostas_expiradas={report.responses_expired} "
                f"cotacoes_expiradas={report.quotes_expired} "
                f"cotacoes_reconciliadas={report.quotes_reconciled}"
            )
