import re
import subprocess
from pathlib import Path
from unittest.mock import patch

from store_case import StoreTestCase

from invoice_studio.backends import invoices, pdf
from invoice_studio.backends.errors import UpstreamFailure, ValidationFailed
from invoice_studio.backends.render import render_invoice


def _fake_render(contract, build_dir: Path, pdflatex=None):
    build_dir.mkdir(parents=True, exist_ok=True)
    pdf_path = build_dir / "invoice.pdf"
    pdf_path.write_bytes(b"%PDF-fake " + contract.template_key.encode())
    return {"tex_path": str(build_dir / "invoice.tex"), "pdf_path": str(pdf_path)}


class TexTemplateTests(StoreTestCase):
    def contract(self, **overrides):
        invoice = self.make_invoice(**overrides)
        return render_invoice(invoice, self.client, [self.item_a, self.item_b])

    def test_replacements_escape_latex(self):
        contract = self.contract(
            invoice_number="INV_7&8",
            notes="50% upfront\nRest on delivery",
            template_key="modern",
        )

        values = pdf.tex_replacements(contract)

        self.assertEqual(values["ACCENT_COLOR"], "0F766E")
        self.assertEqual(values["INVOICE_NUMBER"], r"INV\_7\&8")
        self.assertIn(r"50\% upfront\\ ", values["NOTES"])
        self.assertIn(r"\subsection*{Notes}", values["NOTES"])
        self.assertEqual(values["PAYMENT_INSTRUCTIONS"], "")
        self.assertIn(r"\textbf{Acme Pvt Ltd}", values["BILL_TO_BLOCK"])
        self.assertIn("Rs.~1,180.00", values["SUMMARY_ROWS"])
        self.assertIn(r"\midrule", values["SUMMARY_ROWS"])
        self.assertIn(r"1 & Design sprint & 2 & Rs.~400.00 & Rs.~800.00\\", values["ITEM_ROWS"])

    def test_unknown_theme_falls_back_to_classic(self):
        contract = self.contract(template_key="retro")
        self.assertEqual(pdf.tex_replacements(contract)["ACCENT_COLOR"], "333333")

    def test_fill_template_leaves_no_placeholders(self):
        filled = pdf.fill_template(self.contract())

        self.assertEqual(re.findall(r"%%[A-Z_]+%%", filled), [])
        self.assertIn(r"\definecolor{accent}{HTML}{333333}", filled)


class RenderContractPdfTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        invoice = self.make_invoice()
        self.contract = render_invoice(invoice, self.client, [self.item_a])
        self.build_dir = Path(self.tempdir.name) / "build"

    def test_runs_pdflatex_twice(self):
        calls = []

        def fake_run(args, cwd, **kwargs):
            calls.append((args, cwd))
            (Path(cwd) / "invoice.pdf").write_bytes(b"%PDF")
            return subprocess.CompletedProcess(args, 0, stdout="ok", stderr="")

        with patch.object(pdf.subprocess, "run", side_effect=fake_run):
            paths = pdf.render_contract_pdf(self.contract, self.build_dir, "/opt/tex/pdflatex")

        self.assertEqual(len(calls), 2)
        self.assertEqual(calls[0][0], ["/opt/tex/pdflatex", "-interaction=nonstopmode", "invoice.tex"])
        self.assertEqual(calls[0][1], self.build_dir)
        self.assertTrue(Path(paths["tex_path"]).is_file())
        self.assertEqual(Path(paths["pdf_path"]).read_bytes(), b"%PDF")

    def test_pdflatex_failure(self):
        error = subprocess.CalledProcessError(1, ["pdflatex"], stderr="! Undefined control sequence")
        with patch.object(pdf.subprocess, "run", side_effect=error):
            with self.assertRaises(UpstreamFailure) as ctx:
                pdf.render_contract_pdf(self.contract, self.build_dir, "pdflatex")
        self.assertIn("exit code 1", str(ctx.exception))

    def test_missing_binary(self):
        with patch.object(pdf, "get_pdflatex_path", return_value=None):
            with self.assertRaises(UpstreamFailure):
                pdf.render_contract_pdf(self.contract, self.build_dir)

        with patch.object(pdf.subprocess, "run", side_effect=FileNotFoundError()):
            with self.assertRaises(UpstreamFailure):
                pdf.render_contract_pdf(self.contract, self.build_dir, "/missing/pdflatex")


class RenderInvoicePdfTests(StoreTestCase):
    def render(self, invoice_id, **kwargs):
        with patch.object(pdf, "render_contract_pdf", side_effect=_fake_render):
            return pdf.render_invoice_pdf(self.owner, invoice_id, **kwargs)

    def test_template_is_saved_on_draft(self):
        invoice = self.make_invoice()

        result = self.render(invoice.id, template_key="bold")

        self.assertEqual(result["template_key"], "bold")
        self.assertEqual(result["filename"], "invoice-INV-1001.pdf")
        self.assertEqual(result["content"], b"%PDF-fake bold")
        self.assertEqual(invoices.get_invoice(self.owner, invoice.id).template_key, "bold")

    def test_template_is_not_saved_on_paid_invoice(self):
        invoice = self.make_invoice(status="paid")
        before = self.stored_bytes(invoice.id)

        result = self.render(invoice.id, template_key="executive")

        self.assertEqual(result["template_key"], "executive")
        self.assertEqual(self.stored_bytes(invoice.id), before)

    def test_build_dir_per_currency(self):
        invoice = self.make_invoice()

        result = self.render(invoice.id)

        self.assertEqual(result["currency"], "INR")
        self.assertEqual(Path(result["pdf_path"]).parent.name, "inr")
        self.assertEqual(Path(result["pdf_path"]).parent.parent.name, invoice.id)

    def test_unknown_template(self):
        invoice = self.make_invoice()
        with self.assertRaises(ValidationFailed):
            self.render(invoice.id, template_key="retro")
