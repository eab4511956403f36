import unittest
from datetime import date, datetime, timezone

from store_case import StoreTestCase

from invoice_studio.backends import invoices_storage as storage
from invoice_studio.backends.reports import summarize_invoices

NOW = datetime(2024, 3, 25, 12, 0, tzinfo=timezone.utc)


class SummarizeInvoicesTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        # paid
        self.make_invoice(
            issue_date="2024-03-01", due_date="2024-03-15", subtotal=1000, tax_total=180,
            status="paid",
        )
        # overdue
        self.make_invoice(
            issue_date="2024-03-02", due_date="2024-03-20", subtotal=500, tax_total=25,
            tax_snapshot={"name": "VAT", "rate": 5}, status="sent",
        )
        # due soon
        self.make_invoice(
            issue_date="2024-03-10", due_date="2024-03-28", subtotal=200, tax_total=0,
            tax_snapshot=None,
        )
        # neither, issued before the reporting window
        self.make_invoice(
            issue_date="2024-01-05", due_date="2024-06-30", subtotal=100, tax_total=18,
            status="On hold",
        )

    def summary(self, **kwargs):
        return summarize_invoices(storage.invoices().find(owner=self.owner), now=NOW, **kwargs)

    def test_totals(self):
        summary = self.summary()

        self.assertEqual(summary.count, 4)
        self.assertAlmostEqual(summary.total, 1180 + 525 + 200 + 118)
        self.assertAlmostEqual(summary.paid, 1180)
        self.assertAlmostEqual(summary.unpaid, 525 + 200 + 118)
        self.assertAlmostEqual(summary.overdue, 525)
        self.assertAlmostEqual(summary.due_soon, 200)
        self.assertAlmostEqual(summary.tax_total, 180 + 25 + 18)
        self.assertEqual(summary.tax_by_name, {"GST": 198.0, "VAT": 25.0})

    def test_status_breakdowns(self):
        summary = self.summary()

        self.assertEqual(
            summary.status_counts, {"paid": 1, "sent": 1, "draft": 1, "on hold": 1}
        )
        self.assertEqual(
            summary.status_mix, {"paid": 1, "overdue": 1, "due_soon": 1, "other_unpaid": 1}
        )

    def test_issue_date_range(self):
        summary = self.summary(issue_date_from=date(2024, 3, 1), issue_date_to=date(2024, 3, 5))

        self.assertEqual(summary.count, 2)
        self.assertAlmostEqual(summary.total, 1180 + 525)

    def test_empty(self):
        summary = summarize_invoices([], now=NOW).as_dict()

        self.assertEqual(summary["count"], 0)
        self.assertEqual(summary["tax_by_name"], {})
        self.assertEqual(
            summary["status_mix"], {"paid": 0, "overdue": 0, "due_soon": 0, "other_unpaid": 0}
        )


if __name__ == "__main__":
    unittest.main()
