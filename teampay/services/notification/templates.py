"""Receipt and admin-alert email bodies."""

import html
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _money(amount: Decimal) -> str:
    return f"${Decimal(amount):,.2f}"


def payment_receipt_email(payment, collection, receipt_url: str | None, support_email: str) -> RenderedEmail:
    title = html.escape(collection.title)
    name = html.escape(payment.payer_name or "there")
    amount = _money(payment.amount)
    receipt_line_html = (
        f'<p><a href="{html.escape(receipt_url)}">View your card receipt</a></p>' if receipt_url else ""
    )
    receipt_line_text = f"Card receipt: {receipt_url}\n" if receipt_url else ""
    body_html = (
        f"<h2>Thanks for your payment, {name}!</h2>"
        f"<p>We received <strong>{amount}</strong> for <strong>{title}</strong>.</p>"
        f"<p>Reference: {html.escape(payment.id)}</p>"
        f"{receipt_line_html}"
        f"<p>Questions? Reply to this email or write to {html.escape(support_email)}.</p>"
    )
    body_text = (
        f"Thanks for your payment, {payment.payer_name or 'there'}!\n\n"
        f"We received {amount} for {collection.title}.\n"
        f"Reference: {payment.id}\n"
        f"{receipt_line_text}"
        f"Questions? Contact {support_email}.\n"
    )
    return RenderedEmail(
        subject=f"Payment Receipt - {collection.title} | Empire Football Group",
        html=body_html,
        text=body_text,
    )


def admin_notification_email(payment, collection, app_url: str) -> RenderedEmail:
    amount = _money(payment.amount)
    payer = payment.payer_name or "Unknown payer"
    link = f"{app_url.rstrip('/')}/admin/collections/{collection.id}/payments"
    progress = f"{_money(collection.current_amount)}"
    if collection.target_amount:
        progress += f" of {_money(collection.target_amount)}"
    body_html = (
        f"<h2>New payment for {html.escape(collection.title)}</h2>"
        f"<ul><li>Amount: {amount}</li>"
        f"<li>Payer: {html.escape(payer)} ({html.escape(payment.payer_email or 'no email')})</li>"
        f"<li>Collected so far: {progress}</li></ul>"
        f'<p><a href="{html.escape(link)}">Open collection payments</a></p>'
    )
    body_text = (
        f"New payment for {collection.title}\n"
        f"Amount: {amount}\n"
        f"Payer: {payer} ({payment.payer_email or 'no email'})\n"
        f"Collected so far: {progress}\n"
        f"{link}\n"
    )
    return RenderedEmail(
        subject=f"New Payment: {amount} for {collection.title}",
        html=body_html,
        text=body_text,
    )
