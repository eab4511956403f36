"""LaTeX rendering of the invoice render contract."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any, Dict

from mcp.server.fastmcp import FastMCP

from ..utils.config import get_pdflatex_path
from ..utils.logging import record_write_attempt
from .access import require_writes_enabled, resolve_owner
from .errors import UpstreamFailure, ValidationFailed
from .fx import FxRatesCache
from .invoices import invoice_render_contract, select_template
from .invoices_storage import get_store_root
from .render import Party, RenderContract

_LOGGER = logging.getLogger("invoice_studio.backends.pdf")
_TEMPLATE_PATH = Path(__file__).resolve().parents[1] / "templates" / "invoice.tex"

# template key -> accent colour (HTML hex)
TEMPLATE_THEMES: dict[str, str] = {
    "classic": "333333",
    "modern": "0F766E",
    "minimal": "000000",
    "executive": "1E3A5F",
    "bold": "B91C1C",
}
DEFAULT_THEME = "classic"

_LATEX_REPLACEMENTS = {
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
    "\\": r"\textbackslash{}",
    # Currency symbols pdflatex cannot take from utf8 input directly.
    "₹": "Rs.~",
    "€": r"\texteuro{}",
    "£": r"\pounds{}",
    "¥": r"\textyen{}",
}


def _escape_tex(text: str) -> str:
    return "".join(_LATEX_REPLACEMENTS.get(ch, ch) for ch in text)


def _escape_multiline(text: str | None) -> str:
    if not text:
        return ""
    escaped = _escape_tex(text)
    return escaped.replace("\n", r"\\ " + "\n")


def _format_party_block(party: Party) -> str:
    lines = [r"\textbf{" + _escape_tex(party.name) + "}"] if party.name else []
    lines.extend(_escape_tex(line) for line in party.lines)
    return r"\\ ".join(lines)


def _format_item_rows(contract: RenderContract) -> str:
    rows = []
    for idx, item in enumerate(contract.items, start=1):
        line = " & ".join(
            [
                str(idx),
                _escape_tex(item.description),
                f"{item.quantity:g}",
                _escape_tex(item.unit_price_formatted),
                _escape_tex(item.amount_formatted),
            ]
        )
        rows.append(f"{line}\\\\")
    return "\n".join(rows)


def _format_summary_rows(contract: RenderContract) -> str:
    rows = []
    for line in contract.summary:
        label = _escape_tex(line.label)
        amount = _escape_tex(line.formatted)
        if line.key == "total":
            rows.append(r"\midrule")
            rows.append(rf"\textbf{{{label}}} & \textbf{{{amount}}}\\")
        else:
            rows.append(f"{label} & {amount}\\\\")
    return "\n".join(rows)


def _section(title: str, text: str) -> str:
    if not text:
        return ""
    return rf"\subsection*{{{title}}}" + "\n" + _escape_multiline(text) + "\n"


def tex_replacements(contract: RenderContract) -> Dict[str, str]:
    """Placeholder values for ``templates/invoice.tex``."""

    theme = TEMPLATE_THEMES.get(contract.template_key, TEMPLATE_THEMES[DEFAULT_THEME])
    return {
        "ACCENT_COLOR": theme,
        "SELLER_BLOCK": _format_party_block(contract.seller),
        "BILL_TO_BLOCK": _format_party_block(contract.bill_to),
        "INVOICE_NUMBER": _escape_tex(contract.invoice_number),
        "ISSUE_DATE": contract.issue_date.isoformat(),
        "DUE_DATE": contract.due_date.isoformat(),
        "STATUS": _escape_tex(contract.status.upper()),
        "PAYMENT_META": r"\\ ".join(_escape_tex(meta) for meta in contract.payment_meta),
        "ITEM_ROWS": _format_item_rows(contract),
        "SUMMARY_ROWS": _format_summary_rows(contract),
        "NOTES": _section("Notes", contract.notes),
        "PAYMENT_INSTRUCTIONS": _section("Payment instructions", contract.payment_instructions),
        "TERMS": _section("Terms and conditions", contract.terms_and_conditions),
    }


def fill_template(contract: RenderContract) -> str:
    if not _TEMPLATE_PATH.is_file():
        raise UpstreamFailure(f"Template not found at {_TEMPLATE_PATH}")
    tex_source = _TEMPLATE_PATH.read_text(encoding="utf-8")
    for key, value in tex_replacements(contract).items():
        tex_source = tex_source.replace(f"%%{key}%%", value)
    return tex_source


def render_contract_pdf(
    contract: RenderContract, build_dir: Path, pdflatex: str | None = None
) -> dict[str, Any]:
    """Write the filled template into ``build_dir`` and run pdflatex twice."""

    build_dir.mkdir(parents=True, exist_ok=True)
    tex_path = build_dir / "invoice.tex"
    pdf_path = build_dir / "invoice.pdf"
    tex_path.write_text(fill_template(contract), encoding="utf-8")

    pdflatex = pdflatex or get_pdflatex_path()
    if not pdflatex:
        raise UpstreamFailure(
            "pdflatex not found. Install TeX Live or set PDFLATEX_PATH to your pdflatex binary."
        )

    last_result: subprocess.CompletedProcess[str] | None = None
    try:
        for _ in range(2):
            last_result = subprocess.run(
                [pdflatex, "-interaction=nonstopmode", tex_path.name],
                cwd=build_dir,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=True,
            )
    except FileNotFoundError as exc:
        raise UpstreamFailure(f"pdflatex not found at: {pdflatex}") from exc
    except subprocess.CalledProcessError as exc:
        _LOGGER.error("pdflatex failed", extra={"stderr": exc.stderr})
        raise UpstreamFailure(f"pdflatex failed with exit code {exc.returncode}") from exc

    if last_result is not None:
        _LOGGER.debug("pdflatex output", extra={"stdout": last_result.stdout})
    return {"tex_path": str(tex_path), "pdf_path": str(pdf_path)}


def render_invoice_pdf(
    owner: str,
    invoice_id: str,
    currency: str | None = None,
    template_key: str | None = None,
    fx_cache: FxRatesCache | None = None,
) -> dict[str, Any]:
    """Render an invoice to PDF in ``currency``.

    A requested ``template_key`` is saved on the invoice while it is still
    mutable; locked invoices are rendered with it without being modified.
    Returns the file paths, a download filename and the PDF bytes.
    """

    if template_key and template_key not in TEMPLATE_THEMES:
        raise ValidationFailed(
            f"Unknown template '{template_key}'. Choose one of: {', '.join(TEMPLATE_THEMES)}"
        )
    invoice = select_template(owner, invoice_id, template_key)
    contract = invoice_render_contract(owner, invoice, currency, fx_cache)

    build_dir = get_store_root() / "build" / invoice.id / contract.currency_code.lower()
    paths = render_contract_pdf(contract, build_dir)
    content = Path(paths["pdf_path"]).read_bytes()
    _LOGGER.info("Rendered invoice %s as PDF (%s)", invoice.id, contract.currency_code)
    return {
        "invoice_id": invoice.id,
        "currency": contract.currency_code,
        "template_key": contract.template_key,
        "filename": f"invoice-{invoice.invoice_number}.pdf",
        "content": content,
        **paths,
    }


def register(server: FastMCP) -> None:
    """Register PDF tools."""

    @server.tool(name="render_invoice_pdf")
    def render_invoice_pdf_tool(
        invoice_id: str,
        currency: str | None = None,
        template_key: str | None = None,
        owner: str | None = None,
    ) -> Dict[str, Any]:
        """Render an invoice to PDF using the LaTeX template.

        template_key: classic | modern | minimal | executive | bold. It is saved
        on the invoice unless the invoice is paid (or otherwise locked).
        currency: display currency; amounts are converted from INR line by line.
        """

        require_writes_enabled()
        acting = resolve_owner(owner)
        record_write_attempt("invoice.render_pdf", owner=acting, invoice=invoice_id)
        result = render_invoice_pdf(acting, invoice_id, currency, template_key)
        result.pop("content", None)
        return result


__all__ = [
    "TEMPLATE_THEMES",
    "fill_template",
    "register",
    "render_contract_pdf",
    "render_invoice_pdf",
    "tex_replacements",
]
