import unittest
from datetime import date, datetime, timezone

from portal_cotacoes.quotes.lifecycle import (
    ProposalLine,
    can_transition_visit,
    deadline_passed,
    derive_supplier_status,
    has_sendable_item,
    is_quote_locked_for_suppliers,
    is_quote_open_for_proposals,
    is_response_editable,
    normalize_proposal_items,
    parse_timestamp,
    proposal_total,
    quote_visible_to_supplier,
    send_gate_rejection,
    status_after_proposal_sent,
    visit_overdue,
    visit_state,
)


def _quote(**overrides):
    quote = {"id": 1, "status": "sent", "supplier_scope": "all", "supplier_id": None, "requires_visit": False}
    quote.update(overrides)
    return quote


class SupplierStatusDerivationTest(unittest.TestCase):
    def test_response_status_maps_to_supplier_status(self) -> None:
        expected = {
            None: "pending",
            "draft": "pending",
            "pending": "pending",
            "sent": "proposal_sent",
            "approved": "approved",
            "rejected": "rejected",
            "expired": "expired",
        }
        for response_status, supplier_status in expected.items():
            with self.subTest(response_status=response_status):
                self.assertEqual(derive_supplier_status(response_status), supplier_status)

    def test_unknown_response_status_is_pending(self) -> None:
        self.assertEqual(derive_supplier_status("archived"), "pending")
        self.assertEqual(derive_supplier_status(" SENT "), "proposal_sent")

    def test_locked_quote_statuses(self) -> None:
        for status in ("pending_approval", "approved", "paid", "delivering", "finalized"):
            self.assertTrue(is_quote_locked_for_suppliers(status))
        for status in ("draft", "sent", "receiving", "received", "under_review", "expired", None):
            self.assertFalse(is_quote_locked_for_suppliers(status))

    def test_response_editable_only_while_draft_or_pending(self) -> None:
        self.assertTrue(is_response_editable(None))
        self.assertTrue(is_response_editable("draft"))
        self.assertTrue(is_response_editable("pending"))
        self.assertFalse(is_response_editable("sent"))
        self.assertFalse(is_response_editable("expired"))


class SupplierVisibilityTest(unittest.TestCase):
    def test_open_scopes_are_visible_while_quote_is_open(self) -> None:
        for scope in ("all", "global"):
            for status in ("sent", "receiving"):
                quote = _quote(status=status, supplier_scope=scope)
                self.assertTrue(quote_visible_to_supplier(quote, has_response=False, assigned=False))

    def test_local_scope_without_target_supplier_is_visible(self) -> None:
        quote = _quote(supplier_scope="local", supplier_id=None)
        self.assertTrue(quote_visible_to_supplier(quote, has_response=False, assigned=False))

    def test_local_scope_with_target_requires_assignment(self) -> None:
        quote = _quote(supplier_scope="local", supplier_id=7)
        self.assertFalse(quote_visible_to_supplier(quote, has_response=False, assigned=False))
        self.assertTrue(quote_visible_to_supplier(quote, has_response=False, assigned=True))

    def test_closed_quote_only_visible_with_response_or_assignment(self) -> None:
        quote = _quote(status="approved")
        self.assertFalse(quote_visible_to_supplier(quote, has_response=False, assigned=False))
        self.assertTrue(quote_visible_to_supplier(quote, has_response=True, assigned=False))
        self.assertTrue(quote_visible_to_supplier(_quote(status="draft"), has_response=False, assigned=True))


class ProposalLinesTest(unittest.TestCase):
    def test_normalize_keeps_invalid_rows_and_parses_numbers(self) -> None:
        lines = normalize_proposal_items(
            [
                {"product_name": " Tinta ", "quantity": "3", "unit_price": "12.5"},
                {"product_name": "", "quantity": "abc", "unit_price": None},
                "not-a-row",
            ]
        )
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0], ProposalLine(product_name="Tinta", quantity=3.0, unit_price=12.5))
        self.assertEqual(lines[1].quantity, 0.0)
        self.assertFalse(lines[1].is_valid_for_draft())

    def test_total_ignores_shipping_and_rounds(self) -> None:
        lines = normalize_proposal_items(
            [
                {"product_name": "A", "quantity": 3, "unit_price": 0.1},
                {"product_name": "B", "quantity": 2, "unit_price": 10},
            ]
        )
        self.assertEqual(proposal_total(lines), 20.3)

    def test_total_counts_lines_without_product_name(self) -> None:
        lines = normalize_proposal_items(
            [
                {"product_name": "", "quantity": 2, "unit_price": 10},
                {"product_name": "Widget", "quantity": 2, "unit_price": 10},
            ]
        )
        self.assertFalse(lines[0].is_valid_for_send())
        self.assertEqual(proposal_total(lines), 40.0)

    def test_sendable_requires_positive_price(self) -> None:
        free = normalize_proposal_items([{"product_name": "Brinde", "quantity": 1, "unit_price": 0}])
        self.assertTrue(free[0].is_valid_for_draft())
        self.assertFalse(has_sendable_item(free))

    def test_non_finite_numbers_parse_as_zero(self) -> None:
        for raw in ("inf", "-inf", "nan", "1e309", 10**400, float("inf")):
            with self.subTest(raw=raw):
                lines = normalize_proposal_items([{"product_name": "Cimento", "quantity": raw, "unit_price": raw}])
                self.assertEqual((lines[0].quantity, lines[0].unit_price), (0.0, 0.0))
                self.assertFalse(has_sendable_item(lines))
                self.assertEqual(proposal_total(lines), 0.0)


class SendGateTest(unittest.TestCase):
    def setUp(self) -> None:
        self.valid = normalize_proposal_items([{"product_name": "Cimento", "quantity": 1, "unit_price": 30}])

    def test_locked_quote_reported_before_item_problems(self) -> None:
        self.assertEqual(send_gate_rejection(_quote(status="approved"), [], []), "quote_locked")

    def test_draft_and_expired_quotes_are_not_open(self) -> None:
        for status in ("draft", "expired", " EXPIRED "):
            with self.subTest(status=status):
                self.assertFalse(is_quote_open_for_proposals(status))
                self.assertEqual(send_gate_rejection(_quote(status=status), self.valid, []), "quote_not_open")
        for status in ("sent", "receiving", "received", "under_review"):
            self.assertTrue(is_quote_open_for_proposals(status))
        self.assertFalse(is_quote_open_for_proposals("finalized"))

    def test_empty_items(self) -> None:
        self.assertEqual(send_gate_rejection(_quote(), [], []), "items_required")

    def test_no_valid_item(self) -> None:
        lines = normalize_proposal_items([{"product_name": "", "quantity": 1, "unit_price": 10}])
        self.assertEqual(send_gate_rejection(_quote(), lines, []), "valid_items_required")

    def test_one_valid_item_is_enough(self) -> None:
        lines = self.valid + normalize_proposal_items([{"product_name": "", "quantity": 0, "unit_price": 0}])
        self.assertIsNone(send_gate_rejection(_quote(), lines, []))

    def test_visit_gate_needs_any_confirmed_visit(self) -> None:
        quote = _quote(requires_visit=1)
        self.assertEqual(
            send_gate_rejection(quote, self.valid, [{"status": "scheduled"}]),
            "visit_confirmation_required",
        )
        visits = [{"status": "confirmed"}, {"status": "overdue"}, {"status": "scheduled"}]
        self.assertIsNone(send_gate_rejection(quote, self.valid, visits))

    def test_only_first_proposal_moves_the_quote(self) -> None:
        self.assertEqual(status_after_proposal_sent("sent"), "receiving")
        for status in ("receiving", "approved", "draft", None):
            self.assertIsNone(status_after_proposal_sent(status))


class VisitStateTest(unittest.TestCase):
    def test_visit_state_priority(self) -> None:
        self.assertEqual(visit_state([]), "none")
        self.assertEqual(visit_state([{"status": "overdue"}]), "overdue")
        self.assertEqual(visit_state([{"status": "overdue"}, {"status": "scheduled"}]), "scheduled")
        self.assertEqual(visit_state([{"status": "scheduled"}, {"status": "confirmed"}]), "confirmed")

    def test_visit_transitions(self) -> None:
        self.assertTrue(can_transition_visit(None, "scheduled"))
        self.assertTrue(can_transition_visit("scheduled", "confirmed"))
        self.assertTrue(can_transition_visit("scheduled", "overdue"))
        self.assertTrue(can_transition_visit("overdue", "scheduled"))
        self.assertFalse(can_transition_visit("overdue", "confirmed"))
        self.assertFalse(can_transition_visit("confirmed", "scheduled"))
        self.assertFalse(can_transition_visit("none", "confirmed"))


class TimestampRulesTest(unittest.TestCase):
    def test_parse_timestamp_variants(self) -> None:
        self.assertEqual(parse_timestamp("2026-03-10"), datetime(2026, 3, 10, tzinfo=timezone.utc))
        self.assertEqual(
            parse_timestamp("2026-03-10", end_of_day=True),
            datetime(2026, 3, 11, tzinfo=timezone.utc),
        )
        self.assertEqual(
            parse_timestamp("2026-03-10T12:30:00Z"),
            datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc),
        )
        self.assertEqual(parse_timestamp(date(2026, 3, 10)), datetime(2026, 3, 10, tzinfo=timezone.utc))
        self.assertIsNone(parse_timestamp("amanha"))
        self.assertIsNone(parse_timestamp(""))

    def test_date_only_deadline_lasts_the_whole_day(self) -> None:
        self.assertFalse(deadline_passed("2026-03-10", datetime(2026, 3, 10, 23, 59, tzinfo=timezone.utc)))
        self.assertTrue(deadline_passed("2026-03-10", datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc)))
        self.assertFalse(deadline_passed(None, datetime(2030, 1, 1, tzinfo=timezone.utc)))

    def test_visit_overdue_applies_grace(self) -> None:
        visit = {"status": "scheduled", "scheduled_date": "2026-03-10"}
        now = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)
        self.assertTrue(visit_overdue(visit, now, grace_hours=0))
        self.assertFalse(visit_overdue(visit, now, grace_hours=24))
        self.assertFalse(visit_overdue({"status": "confirmed", "scheduled_date": "2026-03-10"}, now))


if __name__ == "__main__":
    unittest.main()
