import sys
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoice_studio.backends.lifecycle import (
    InvoiceState,
    classify,
    classify_lifecycle,
    invoice_state,
    is_draft_like,
    normalize_status,
)

NOW = datetime(2024, 6, 15, 10, 30, tzinfo=timezone.utc)


class NormalizeStatusTests(unittest.TestCase):
    def test_pending_and_empty_fold_into_draft(self):
        for value in ("pending", "PENDING", "", None, "  Draft "):
            self.assertEqual(normalize_status(value), "draft")

    def test_custom_status_is_lowercased(self):
        self.assertEqual(normalize_status("On-Hold"), "on-hold")
        self.assertIs(invoice_state("On-Hold"), InvoiceState.OTHER)

    def test_states(self):
        self.assertIs(invoice_state("Sent"), InvoiceState.SENT)
        self.assertIs(invoice_state("paid"), InvoiceState.PAID)
        self.assertTrue(is_draft_like("pending"))
        self.assertFalse(is_draft_like("sent"))


class ClassifyTests(unittest.TestCase):
    def test_sent_invoice_past_due_is_overdue(self):
        result = classify("sent", NOW - timedelta(days=10), NOW - timedelta(days=1), NOW)

        self.assertEqual(result.computed_status, "overdue")
        self.assertEqual(result.labels, ["Overdue"])
        self.assertTrue(result.flags.is_overdue)
        self.assertFalse(result.flags.is_due_soon)

    def test_old_draft_due_in_three_days_is_stale_and_due_soon(self):
        result = classify("draft", NOW - timedelta(days=20), NOW + timedelta(days=3), NOW)

        self.assertEqual(result.labels, ["Stale draft", "Due soon"])
        self.assertEqual(result.computed_status, "draft")
        self.assertEqual(result.age_days, 20)

    def test_paid_invoice_is_never_overdue(self):
        result = classify("paid", NOW - timedelta(days=60), NOW - timedelta(days=30), NOW)

        self.assertEqual(result.computed_status, "paid")
        self.assertEqual(result.labels, [])
        self.assertTrue(result.flags.is_paid)

    def test_calendar_dates_are_utc_midnight(self):
        # Due "today": midnight has passed, so it is already overdue.
        result = classify("sent", date(2024, 6, 1), date(2024, 6, 15), NOW)

        self.assertTrue(result.flags.is_overdue)
        self.assertEqual(result.age_days, 14)

    def test_due_soon_window_is_inclusive(self):
        result = classify("sent", NOW, NOW + timedelta(days=7), NOW)
        self.assertEqual(result.labels, ["Due soon"])

        later = classify("sent", NOW, NOW + timedelta(days=7, seconds=1), NOW)
        self.assertEqual(later.labels, [])

    def test_stale_threshold_is_configurable(self):
        result = classify(
            "pending", NOW - timedelta(days=5), NOW + timedelta(days=30), NOW, stale_draft_days=5
        )
        self.assertEqual(result.labels, ["Stale draft"])

    def test_missing_dates_produce_no_labels(self):
        result = classify("draft", None, None, NOW)

        self.assertEqual(result.labels, [])
        self.assertIsNone(result.age_days)


def test_classify_lifecycle_accepts_mappings_with_iso_strings():
    result = classify_lifecycle(
        {"status": "Sent", "issue_date": "2024-06-01", "due_date": "2024-06-10T00:00:00Z"},
        NOW,
    )

    assert result.normalized_status == "sent"
    assert result.computed_status == "overdue"
    assert result.as_dict()["flags"]["is_overdue"] is True


def test_naive_now_is_treated_as_utc():
    naive = NOW.replace(tzinfo=None)
    assert classify("sent", None, NOW - timedelta(hours=1), naive).flags.is_overdue
