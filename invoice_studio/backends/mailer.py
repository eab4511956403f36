"""Invoice email delivery with a persistent delivery log."""
from __future__ import annotations

import base64
import logging
import re
import smtplib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid, parseaddr
from typing import Any, Callable, Dict, Protocol

import httpx
from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..utils.config import CANONICAL_CURRENCY, EmailSettings, email_settings
from ..utils.logging import record_write_attempt
from . import catalog
from . import invoices_storage as storage
from .access import require_writes_enabled, resolve_owner
from .errors import InvoiceError, UpstreamFailure, ValidationFailed, describe_validation_error
from .fx import FxRatesCache, default_cache, resolve_rate
from .invoices import get_invoice
from .invoices_models import Account, Client, EmailLog, Invoice
from .invoices_storage import new_id
from .pdf import render_invoice_pdf

_LOGGER = logging.getLogger("invoice_studio.backends.mailer")

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
INVOICE_HISTORY_LIMIT = 50
OWNER_HISTORY_LIMIT = 200
DEFAULT_SENDER_NAME = "Invoice Studio"

# Practical, not RFC-complete.
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email_list(value: str | list[str] | None) -> list[str]:
    """Split comma-separated input, trim, drop blanks and duplicates (order kept)."""

    if not value:
        return []
    parts = value if isinstance(value, (list, tuple)) else str(value).split(",")
    cleaned = [str(part or "").strip() for part in parts]
    return list(dict.fromkeys(part for part in cleaned if part))


def is_valid_email(email: str | None) -> bool:
    return bool(_EMAIL_PATTERN.match(str(email or "").strip()))


def extract_email_address(value: str | None) -> str:
    """``"Name <a@b.c>"`` -> ``"a@b.c"``; plain addresses pass through."""

    return parseaddr(str(value or "").strip())[1] or str(value or "").strip()


class EmailDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    sender: str = ""
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str = ""
    body_text: str = ""

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _recipients(cls, value: Any) -> list[str]:
        return normalize_email_list(value)


@dataclass(frozen=True)
class OutgoingMail:
    sender: str
    to: list[str]
    subject: str
    body_text: str
    attachment_name: str
    attachment: bytes
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    sender_name: str = DEFAULT_SENDER_NAME


@dataclass(frozen=True)
class SendResult:
    message_id: str = ""
    accepted: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    response: str = ""


class MailTransport(Protocol):
    def send(self, mail: OutgoingMail) -> SendResult: ...


class SmtpTransport:
    """Plain SMTP; implicit TLS on port 465, STARTTLS otherwise."""

    def __init__(self, settings: EmailSettings):
        self.settings = settings

    def _message(self, mail: OutgoingMail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = mail.sender or self.settings.sender or ""
        message["To"] = ", ".join(mail.to)
        if mail.cc:
            message["Cc"] = ", ".join(mail.cc)
        message["Subject"] = mail.subject
        message["Message-ID"] = make_msgid()
        message.set_content(mail.body_text)
        message.add_attachment(
            mail.attachment,
            maintype="application",
            subtype="pdf",
            filename=mail.attachment_name,
        )
        return message

    def send(self, mail: OutgoingMail) -> SendResult:
        settings = self.settings
        message = self._message(mail)
        recipients = [*mail.to, *mail.cc, *mail.bcc]
        smtp_class = smtplib.SMTP_SSL if settings.port == 465 else smtplib.SMTP
        try:
            with smtp_class(settings.host, settings.port, timeout=settings.timeout) as smtp:
                if settings.port != 465:
                    smtp.starttls()
                smtp.login(settings.user, settings.password)
                refused = smtp.send_message(message, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as exc:
            raise UpstreamFailure(f"SMTP delivery failed: {exc}") from exc

        return SendResult(
            message_id=str(message["Message-ID"]),
            accepted=[address for address in recipients if address not in refused],
            rejected=sorted(refused),
            response="SMTP accepted",
        )


class BrevoTransport:
    """Brevo transactional email HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str | None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.sender = extract_email_address(sender)
        self.timeout = timeout
        self._client = client

    def _payload(self, mail: OutgoingMail) -> dict[str, Any]:
        if not is_valid_email(self.sender):
            raise ValidationFailed(
                "Brevo requires a valid sender email. Set EMAIL_FROM to a verified Brevo sender."
            )
        payload: dict[str, Any] = {
            "sender": {"email": self.sender, "name": mail.sender_name},
            "to": [{"email": email} for email in mail.to],
            "subject": mail.subject,
            "textContent": mail.body_text,
            "attachment": [
                {
                    "name": mail.attachment_name,
                    "content": base64.b64encode(mail.attachment).decode("ascii"),
                }
            ],
        }
        # The acting user's address stays reachable through Reply-To.
        requested = extract_email_address(mail.sender)
        if is_valid_email(requested) and requested != self.sender:
            payload["replyTo"] = {"email": requested, "name": mail.sender_name}
        if mail.cc:
            payload["cc"] = [{"email": email} for email in mail.cc]
        if mail.bcc:
            payload["bcc"] = [{"email": email} for email in mail.bcc]
        return payload

    def send(self, mail: OutgoingMail) -> SendResult:
        payload = self._payload(mail)
        headers = {"api-key": self.api_key, "accept": "application/json"}
        try:
            if self._client is not None:
                response = self._client.post(BREVO_API_URL, json=payload, headers=headers)
            else:
                response = httpx.post(
                    BREVO_API_URL, json=payload, headers=headers, timeout=self.timeout
                )
        except httpx.HTTPError as exc:
            raise UpstreamFailure(f"Brevo request failed: {exc}") from exc

        if response.status_code >= 400:
            raise UpstreamFailure(f"Brevo API error: {response.status_code} {response.text}")
        try:
            message_id = str(response.json().get("messageId") or "")
        except ValueError:
            message_id = ""
        return SendResult(
            message_id=message_id,
            accepted=list(mail.to),
            rejected=[],
            response="Brevo API accepted",
        )


def build_transport(settings: EmailSettings | None = None) -> MailTransport:
    """SMTP when fully configured, otherwise the Brevo API when a key is set."""

    settings = settings or email_settings()
    missing = settings.smtp_missing()
    if not missing:
        return SmtpTransport(settings)
    if settings.brevo_api_key:
        return BrevoTransport(settings.brevo_api_key, settings.sender, settings.timeout)
    raise ValidationFailed(f"Email not configured. Missing env: {', '.join(missing)}")


def default_email_draft(
    invoice: Invoice, client: Client | None, account: Account | None
) -> EmailDraft:
    from_name = (account.company_name or account.name) if account else ""
    from_name = from_name or DEFAULT_SENDER_NAME
    number = invoice.invoice_number or invoice.id

    body = "\n".join(
        [
            f"Hi {client.name}," if client else "Hi,",
            "",
            f"Please find your invoice (#{number}) attached.",
            "",
            "Thanks,",
            from_name,
        ]
    )
    return EmailDraft(
        sender=(account.email if account else "") or (email_settings().sender or ""),
        to=[client.email] if client and client.email else [],
        subject=f"Invoice #{number} from {from_name}",
        body_text=body,
    )


def _load_parties(owner: str, invoice: Invoice) -> tuple[Client | None, Account | None]:
    client = None
    if invoice.client:
        client = storage.clients().find_by_id(invoice.client)
        if client is not None and client.owner != owner:
            client = None
    return client, catalog.get_account(owner)


def get_email_draft(owner: str, invoice_id: str) -> EmailDraft:
    invoice = get_invoice(owner, invoice_id)
    client, account = _load_parties(owner, invoice)
    return default_email_draft(invoice, client, account)


PdfRenderer = Callable[[str, Invoice, str, FxRatesCache], bytes]


def _render_pdf_bytes(owner: str, invoice: Invoice, currency: str, fx_cache: FxRatesCache) -> bytes:
    return render_invoice_pdf(owner, invoice.id, currency, fx_cache=fx_cache)["content"]


def _validate_recipients(draft: EmailDraft) -> None:
    recipients = [*draft.to, *draft.cc, *draft.bcc]
    if not draft.to:
        raise ValidationFailed("At least one recipient is required.")
    invalid = [email for email in recipients if not is_valid_email(email)]
    if invalid:
        raise ValidationFailed(f"Invalid email(s): {', '.join(invalid)}")


def send_invoice_email(
    owner: str,
    invoice_id: str,
    currency: str | None = None,
    mail: EmailDraft | dict[str, Any] | None = None,
    *,
    transport: MailTransport | None = None,
    render_pdf: PdfRenderer | None = None,
    fx_cache: FxRatesCache | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """Render the invoice PDF, send it, and log the attempt.

    Without ``mail`` the default draft is sent. Recipient problems are
    rejected before anything is logged; PDF and delivery failures are logged
    as ``failed`` and re-raised.
    """

    invoice = get_invoice(owner, invoice_id)
    client, account = _load_parties(owner, invoice)
    fx_cache = fx_cache or default_cache()
    code, _ = resolve_rate(currency or CANONICAL_CURRENCY, fx_cache)

    if mail is None:
        draft = default_email_draft(invoice, client, account)
    else:
        try:
            draft = mail if isinstance(mail, EmailDraft) else EmailDraft.model_validate(mail)
        except ValidationError as exc:
            raise ValidationFailed(describe_validation_error(exc)) from exc
        if not draft.subject:
            raise ValidationFailed("Subject is required")
        if not draft.body_text:
            raise ValidationFailed("Email content is required")
    _validate_recipients(draft)
    transport = transport or build_transport()

    log_base = {
        "owner": owner,
        "invoice": invoice.id,
        "sender": draft.sender or (email_settings().sender or ""),
        "to": draft.to,
        "cc": draft.cc,
        "bcc": draft.bcc,
        "subject": draft.subject,
        "body_text": draft.body_text,
        "currency": code,
    }
    sender_name = (account.company_name or account.name) if account else ""
    record_write_attempt("invoice.email", owner=owner, invoice=invoice.id, to=",".join(draft.to))

    try:
        attachment = (render_pdf or _render_pdf_bytes)(owner, invoice, code, fx_cache)
        result = transport.send(
            OutgoingMail(
                sender=log_base["sender"],
                to=draft.to,
                cc=draft.cc,
                bcc=draft.bcc,
                subject=draft.subject,
                body_text=draft.body_text,
                attachment_name=f"invoice-{invoice.invoice_number or invoice.id}.pdf",
                attachment=attachment,
                sender_name=sender_name or DEFAULT_SENDER_NAME,
            )
        )
    except Exception as exc:
        _log_attempt(log_base, "failed", now, error_message=str(exc) or "Failed to send email")
        _LOGGER.warning("Sending invoice %s failed: %s", invoice.id, exc)
        if isinstance(exc, InvoiceError):
            raise
        raise UpstreamFailure(f"Failed to send email: {exc}") from exc

    entry = _log_attempt(
        log_base,
        "sent",
        now,
        provider_message_id=result.message_id,
        accepted=list(result.accepted),
        rejected=list(result.rejected),
        provider_response=result.response,
    )
    _LOGGER.info("Sent invoice %s to %s", invoice.id, ", ".join(draft.to))
    return {
        "message": "Email sent successfully",
        "message_id": result.message_id,
        "accepted": list(result.accepted),
        "rejected": list(result.rejected),
        "response": result.response,
        "log_id": entry.id,
    }


def _log_attempt(
    base: dict[str, Any], status: str, now: datetime | None, **fields: Any
) -> EmailLog:
    now = now or datetime.now(timezone.utc)
    entry = EmailLog(
        id=new_id(),
        status=status,
        sent_at=now,
        created_at=now,
        **base,
        **fields,
    )
    return storage.email_logs().create(entry)


def list_email_history(owner: str, invoice_id: str | None = None) -> list[EmailLog]:
    """Delivery log newest first: 50 entries per invoice, 200 across invoices."""

    if invoice_id:
        invoice = get_invoice(owner, invoice_id)
        logs = storage.email_logs().find(owner=owner, invoice=invoice.id)
        limit = INVOICE_HISTORY_LIMIT
    else:
        logs = storage.email_logs().find(owner=owner)
        limit = OWNER_HISTORY_LIMIT
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    logs.sort(key=lambda log: log.created_at or epoch, reverse=True)
    return logs[:limit]


def register(server: FastMCP) -> None:
    """Register email tools."""

    @server.tool(name="get_email_draft")
    def get_email_draft_tool(invoice_id: str, owner: str | None = None) -> Dict[str, Any]:
        """Default email (sender, recipients, subject, body) for an invoice (read-only)."""

        return get_email_draft(resolve_owner(owner), invoice_id).model_dump()

    @server.tool(name="send_invoice_email")
    def send_invoice_email_tool(
        invoice_id: str,
        currency: str | None = None,
        mail: EmailDraft | None = None,
        owner: str | None = None,
    ) -> Dict[str, Any]:
        """Email the invoice PDF (in ``currency``) and record the attempt.

        Without mail the default draft is used. Custom mail needs a subject,
        body_text and at least one valid recipient. Failed deliveries are
        logged and reported as errors.
        """

        require_writes_enabled()
        return send_invoice_email(resolve_owner(owner), invoice_id, currency, mail)

    @server.tool(name="list_email_history")
    def list_email_history_tool(
        invoice_id: str | None = None, owner: str | None = None
    ) -> list[Dict[str, Any]]:
        """Email delivery log, newest first (per invoice when invoice_id is given)."""

        return [
            log.model_dump(mode="json")
            for log in list_email_history(resolve_owner(owner), invoice_id)
        ]


__all__ = [
    "BrevoTransport",
    "EmailDraft",
    "MailTransport",
    "OutgoingMail",
    "SendResult",
    "SmtpTransport",
    "build_transport",
    "default_email_draft",
    "extract_email_address",
    "get_email_draft",
    "is_valid_email",
    "list_email_history",
    "normalize_email_list",
    "register",
    "send_invoice_email",
]
