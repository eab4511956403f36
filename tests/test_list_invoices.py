import unittest
from datetime import datetime, timezone

from store_case import OTHER_OWNER, StoreTestCase

from invoice_studio.backends import catalog, invoices
from invoice_studio.backends.errors import ValidationFailed
from invoice_studio.backends.invoices import list_invoices_impl

NOW = datetime(2024, 3, 25, 12, 0, tzinfo=timezone.utc)


class ListInvoicesTests(StoreTestCase):
    def _seed(self):
        self.make_invoice(
            invoice_number="2024-0003",
            issue_date="2024-03-05",
            due_date="2024-03-19",
            subtotal=300,
            tax_total=0,
            status="paid",
        )
        self.make_invoice(
            invoice_number="2024-0001",
            issue_date="2024-01-10",
            due_date="2024-04-30",
            subtotal=100,
            tax_total=0,
        )
        self.make_invoice(
            invoice_number="2024-0002",
            issue_date="2024-03-05",
            due_date="2024-03-20",
            subtotal=200,
            tax_total=0,
            status="sent",
        )

    def test_default_sort_and_pagination(self):
        self._seed()

        response = list_invoices_impl(self.owner, limit=2, now=NOW)

        invoice_numbers = [entry["invoice_number"] for entry in response["invoices"]]
        self.assertEqual(invoice_numbers, ["2024-0003", "2024-0002"])
        self.assertTrue(response["has_more"])
        self.assertEqual(response["next_offset"], 2)
        self.assertEqual(response["total_count"], 3)
        self.assertEqual(response["limit"], 2)
        self.assertEqual(response["offset"], 0)
        self.assertEqual(response["sort"], {"by": "issue_date", "direction": "desc"})

        second = list_invoices_impl(self.owner, limit=2, offset=2, now=NOW)
        self.assertEqual([e["invoice_number"] for e in second["invoices"]], ["2024-0001"])
        self.assertFalse(second["has_more"])
        self.assertIsNone(second["next_offset"])

    def test_sort_by_total_ascending(self):
        self._seed()

        response = list_invoices_impl(self.owner, sort_by="total", direction="asc", now=NOW)

        self.assertEqual([e["total"] for e in response["invoices"]], [100, 200, 300])

    def test_unknown_sort_falls_back(self):
        response = list_invoices_impl(self.owner, sort_by="customer", direction="sideways")
        self.assertEqual(response["sort"], {"by": "issue_date", "direction": "desc"})

    def test_entries_carry_lifecycle(self):
        self._seed()

        response = list_invoices_impl(self.owner, now=NOW)
        by_number = {e["invoice_number"]: e for e in response["invoices"]}

        self.assertEqual(by_number["2024-0002"]["lifecycle"]["computed_status"], "overdue")
        self.assertEqual(by_number["2024-0002"]["lifecycle"]["labels"], ["Overdue"])
        self.assertEqual(by_number["2024-0003"]["lifecycle"]["computed_status"], "paid")
        self.assertEqual(by_number["2024-0001"]["lifecycle"]["normalized_status"], "draft")

    def test_status_filter_matches_normalized_and_computed(self):
        self._seed()

        overdue = list_invoices_impl(self.owner, status="overdue", now=NOW)
        drafts = list_invoices_impl(self.owner, status="Draft", now=NOW)
        sent = list_invoices_impl(self.owner, status="sent", now=NOW)

        self.assertEqual([e["invoice_number"] for e in overdue["invoices"]], ["2024-0002"])
        self.assertEqual([e["invoice_number"] for e in drafts["invoices"]], ["2024-0001"])
        self.assertEqual([e["invoice_number"] for e in sent["invoices"]], ["2024-0002"])

    def test_client_and_number_filters(self):
        self._seed()
        other_client = catalog.create_client(self.owner, {"name": "Beta", "email": "b@beta.test"})
        self.make_invoice(invoice_number="BETA-7", client=other_client.id, issue_date="2024-02-01")

        by_client = list_invoices_impl(self.owner, client=other_client.id, now=NOW)
        by_number = list_invoices_impl(self.owner, number_query="beta", now=NOW)

        self.assertEqual([e["invoice_number"] for e in by_client["invoices"]], ["BETA-7"])
        self.assertEqual([e["invoice_number"] for e in by_number["invoices"]], ["BETA-7"])

    def test_issue_date_range_and_limit_cap(self):
        self._seed()

        response = list_invoices_impl(
            self.owner,
            issue_date_from="2024-02-01",
            issue_date_to="2024-03-04",
            limit=500,
            now=NOW,
        )

        self.assertEqual(response["invoices"], [])
        self.assertEqual(response["limit"], 100)
        self.assertFalse(response["has_more"])

    def test_only_own_invoices_are_listed(self):
        self._seed()
        foreign_client = catalog.create_client(OTHER_OWNER, {"name": "X", "email": "x@x.test"})
        foreign_item = catalog.create_item(
            OTHER_OWNER, {"description": "X", "quantity": 1, "price": 1}
        )
        invoices.create_invoice(
            OTHER_OWNER,
            self.invoice_fields(client=foreign_client.id, items=[foreign_item.id]),
        )

        response = list_invoices_impl(self.owner, now=NOW)

        self.assertEqual(response["total_count"], 3)

    def test_total_count_can_be_skipped(self):
        self._seed()
        response = list_invoices_impl(self.owner, include_total_count=False, now=NOW)
        self.assertIsNone(response["total_count"])

    def test_invalid_paging_arguments(self):
        for kwargs in ({"limit": 0}, {"limit": "many"}, {"offset": -1}, {"issue_date_from": "03/05"}):
            with self.subTest(**kwargs):
                with self.assertRaises(ValidationFailed):
                    list_invoices_impl(self.owner, **kwargs)


if __name__ == "__main__":
    unittest.main()
