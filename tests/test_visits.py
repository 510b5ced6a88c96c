import unittest
from datetime import datetime, timezone

from portal_cotacoes.application.lifecycle_sweep import run_lifecycle_sweep
from portal_cotacoes.domain.contracts import VisitConfirmInput, VisitRescheduleInput, VisitScheduleInput
from tests.quote_utils import QuoteServiceTestCase, create_quote, fetch_one, proposal


class VisitSchedulingTest(QuoteServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.quote_id = create_quote(self.service, self.db, self.tenant_id, self.client_id, requires_visit=True)

    def _schedule(self, scheduled_date: str = "2026-11-03", supplier_id: int | None = None):
        return self.service.schedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            visit_input=VisitScheduleInput(
                quote_id=self.quote_id,
                supplier_id=supplier_id or self.supplier_a,
                scheduled_date=scheduled_date,
                notes="Portaria B",
            ),
        )

    def test_schedule_creates_visit_and_history(self) -> None:
        result = self._schedule()

        self.assertEqual(result.status_code, 201)
        visit = result.payload["visit"]
        self.assertEqual(visit["status"], "scheduled")
        self.assertEqual(visit["scheduled_date"], "2026-11-03")
        self.assertEqual(visit["client_id"], self.client_id)
        self.assertEqual(result.payload["visit_state"], "scheduled")
        self.assertEqual(self.event_names()[-1], "VisitScheduled")

        event = fetch_one(
            self.db,
            "SELECT from_status, to_status, reason FROM status_events WHERE entity = 'quote_visit' AND entity_id = ?",
            (visit["id"],),
        )
        self.assertEqual(event, {"from_status": None, "to_status": "scheduled", "reason": "visit_scheduled"})

    def test_schedule_rejections(self) -> None:
        plain = create_quote(self.service, self.db, self.tenant_id, self.client_id)
        not_required = self.service.schedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            visit_input=VisitScheduleInput(quote_id=plain, supplier_id=self.supplier_a, scheduled_date="2026-11-03"),
        )
        bad_date = self._schedule("proxima semana")
        missing = self.service.schedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            visit_input=VisitScheduleInput(quote_id=9999, supplier_id=self.supplier_a, scheduled_date="2026-11-03"),
        )

        self.assertEqual((not_required.status_code, not_required.payload["error"]), (400, "visit_not_required"))
        self.assertEqual((bad_date.status_code, bad_date.payload["error"]), (400, "scheduled_date_invalid"))
        self.assertEqual((missing.status_code, missing.payload["error"]), (404, "quote_not_found"))

    def test_second_schedule_is_refused_while_one_is_pending(self) -> None:
        self._schedule()

        again = self._schedule("2026-11-05")

        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.payload["error"], "visit_already_scheduled")
        count = fetch_one(self.db, "SELECT COUNT(*) AS total FROM quote_visits WHERE quote_id = ?", (self.quote_id,))
        self.assertEqual(count["total"], 1)

    def test_each_supplier_has_its_own_visit(self) -> None:
        self._schedule()

        other = self._schedule(supplier_id=self.supplier_b)

        self.assertEqual(other.status_code, 201)
        listing = self.service.list_visits(self.db, tenant_id=self.tenant_id, quote_id=self.quote_id)
        self.assertEqual(listing.payload["count"], 2)

    def test_schedule_refused_on_locked_quote(self) -> None:
        self.service.save_draft(self.db, tenant_id=self.tenant_id, proposal=proposal(self.quote_id, self.supplier_a))
        self.db.execute("UPDATE quotes SET status = 'pending_approval' WHERE id = ?", (self.quote_id,))
        self.db.commit()

        result = self._schedule()

        self.assertEqual(result.status_code, 409)
        self.assertEqual(result.payload["error"], "quote_locked")


class VisitConfirmationTest(QuoteServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.quote_id = create_quote(self.service, self.db, self.tenant_id, self.client_id, requires_visit=True)
        scheduled = self.service.schedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            visit_input=VisitScheduleInput(quote_id=self.quote_id, supplier_id=self.supplier_a, scheduled_date="2026-11-03"),
        )
        self.visit_id = scheduled.payload["visit"]["id"]

    def test_confirm_records_who_and_when(self) -> None:
        self.service._now_fn = lambda: datetime(2026, 11, 3, 10, 0, tzinfo=timezone.utc)

        result = self.service.confirm_visit(
            self.db,
            tenant_id=self.tenant_id,
            confirm_input=VisitConfirmInput(visit_id=self.visit_id, confirmed_by="Zelador", notes="ok"),
            client_id=self.client_id,
        )

        self.assertEqual(result.status_code, 200)
        visit = result.payload["visit"]
        self.assertEqual(visit["status"], "confirmed")
        self.assertEqual(visit["confirmed_by"], "Zelador")
        self.assertEqual(visit["confirmation_notes"], "ok")
        self.assertEqual(visit["confirmed_date"], "2026-11-03T10:00:00Z")
        self.assertIn("VisitConfirmed", self.event_names())

    def test_confirm_twice_is_an_invalid_transition(self) -> None:
        confirm = VisitConfirmInput(visit_id=self.visit_id)
        self.service.confirm_visit(self.db, tenant_id=self.tenant_id, confirm_input=confirm)

        again = self.service.confirm_visit(self.db, tenant_id=self.tenant_id, confirm_input=confirm)
        schedule = self.service.schedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            visit_input=VisitScheduleInput(quote_id=self.quote_id, supplier_id=self.supplier_a, scheduled_date="2026-11-09"),
        )

        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.payload["error"], "visit_transition_invalid")
        self.assertEqual(schedule.payload["error"], "visit_already_confirmed")

    def test_other_client_cannot_confirm(self) -> None:
        other_client = self.db.execute(
            "INSERT INTO clients (name, email, tenant_id) VALUES ('Outro', 'outro@x.local', ?) RETURNING id",
            (self.tenant_id,),
        ).fetchall()[0]["id"]
        self.db.commit()

        result = self.service.confirm_visit(
            self.db,
            tenant_id=self.tenant_id,
            confirm_input=VisitConfirmInput(visit_id=self.visit_id),
            client_id=other_client,
        )

        self.assertEqual(result.status_code, 404)
        self.assertEqual(fetch_one(self.db, "SELECT status FROM quote_visits WHERE id = ?", (self.visit_id,))["status"], "scheduled")

    def test_supplier_listing_reports_visit_state(self) -> None:
        self.service.confirm_visit(
            self.db,
            tenant_id=self.tenant_id,
            confirm_input=VisitConfirmInput(visit_id=self.visit_id),
        )

        listing = self.service.list_visits(
            self.db,
            tenant_id=self.tenant_id,
            quote_id=self.quote_id,
            supplier_id=self.supplier_a,
        )
        quotes = self.service.list_supplier_quotes(self.db, tenant_id=self.tenant_id, supplier_id=self.supplier_a)

        self.assertEqual(listing.payload["visit_state"], "confirmed")
        self.assertEqual(listing.payload["visit_flow"]["allowed_actions"], ["view_history"])
        item = quotes.payload["items"][0]
        self.assertEqual(item["visit_state"], "confirmed")
        self.assertIn("send_proposal", item["flow"]["allowed_actions"])
        self.assertNotIn("schedule_visit", item["flow"]["allowed_actions"])


class VisitRescheduleTest(QuoteServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.quote_id = create_quote(self.service, self.db, self.tenant_id, self.client_id, requires_visit=True)
        scheduled = self.service.schedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            visit_input=VisitScheduleInput(quote_id=self.quote_id, supplier_id=self.supplier_a, scheduled_date="2026-10-01"),
        )
        self.visit_id = scheduled.payload["visit"]["id"]

    def _mark_overdue(self) -> None:
        report = run_lifecycle_sweep(
            self.db,
            self.tenant_id,
            now=datetime(2026, 10, 5, tzinfo=timezone.utc),
            overdue_grace_hours=24,
        )
        self.assertEqual(report.visits_overdue, 1)

    def test_scheduled_visit_cannot_be_rescheduled(self) -> None:
        result = self.service.reschedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            reschedule_input=VisitRescheduleInput(visit_id=self.visit_id, scheduled_date="2026-10-10"),
        )

        self.assertEqual(result.status_code, 409)
        self.assertEqual(result.payload["error"], "visit_transition_invalid")

    def test_overdue_visit_is_rescheduled(self) -> None:
        self._mark_overdue()

        result = self.service.reschedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            reschedule_input=VisitRescheduleInput(
                visit_id=self.visit_id,
                scheduled_date="2026-10-22",
                reason="Chuva",
            ),
            supplier_id=self.supplier_a,
        )

        self.assertEqual(result.status_code, 200)
        visit = result.payload["visit"]
        self.assertEqual(visit["status"], "scheduled")
        self.assertEqual(visit["scheduled_date"], "2026-10-22")
        self.assertEqual(visit["previous_date"], "2026-10-01")
        self.assertEqual(visit["reschedule_count"], 1)
        self.assertEqual(visit["reschedule_reason"], "Chuva")
        self.assertTrue(self.events[-1].rescheduled)

    def test_overdue_visit_does_not_open_the_send_gate(self) -> None:
        self._mark_overdue()

        result = self.service.send_proposal(
            self.db,
            tenant_id=self.tenant_id,
            proposal=proposal(self.quote_id, self.supplier_a),
        )

        self.assertEqual(result.payload["error"], "visit_confirmation_required")

    def test_other_supplier_cannot_reschedule(self) -> None:
        self._mark_overdue()

        result = self.service.reschedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            reschedule_input=VisitRescheduleInput(visit_id=self.visit_id, scheduled_date="2026-10-22"),
            supplier_id=self.supplier_b,
        )

        self.assertEqual(result.status_code, 404)
        self.assertEqual(result.payload["error"], "visit_not_found")

    def test_reschedule_rejects_bad_date(self) -> None:
        self._mark_overdue()

        result = self.service.reschedule_visit(
            self.db,
            tenant_id=self.tenant_id,
            reschedule_input=VisitRescheduleInput(visit_id=self.visit_id, scheduled_date="22/10"),
        )

        self.assertEqual(result.status_code, 400)
        self.assertEqual(result.payload["error"], "scheduled_date_invalid")


if __name__ == "__main__":
    unittest.main()
