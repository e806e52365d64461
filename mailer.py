import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape

from config import settings

logger = logging.getLogger(__name__)


class MailError(RuntimeError):
    pass


def _bullets(text: str) -> list:
    return [ln.lstrip("-• ").strip() for ln in (text or "").splitlines() if ln.strip()]


def build_job_pack_email_text(job: dict, price_range: str = "", materials: str = "",
                              custom_message: str = "", accept_url: str = "") -> str:
    lines = [f"Hi {job.get('client_name') or 'there'},", ""]
    if custom_message:
        lines += [custom_message, ""]

    lines.append(f"Job: {job.get('title')}")
    if job.get("address"):
        lines.append(f"Site: {job['address']}")
    if job.get("quote_number"):
        lines.append(f"Quote: {job['quote_number']}")
    lines.append("")

    if job.get("ai_summary"):
        lines += ["Summary", job["ai_summary"], ""]

    for heading, key in (("Scope of Work", "ai_scope_of_work"),
                         ("Inclusions", "ai_inclusions"),
                         ("Exclusions", "ai_exclusions")):
        items = _bullets(job.get(key))
        if items:
            lines.append(heading)
            lines += [f"- {item}" for item in items]
            lines.append("")

    if materials:
        lines.append("Materials")
        lines += [f"- {item}" for item in _bullets(materials)]
        if job.get("materials_rough_estimate"):
            lines.append("(Materials quantities are a rough estimate.)")
        lines.append("")

    if price_range:
        lines += [f"Estimated price: {price_range} (excl. GST)", ""]

    if job.get("ai_client_notes"):
        lines += ["Notes", job["ai_client_notes"], ""]

    if accept_url:
        lines += ["To accept or decline this quote, open:", accept_url, ""]

    return "\n".join(lines).strip() + "\n"


def build_job_pack_email_html(job: dict, price_range: str = "", materials: str = "",
                              custom_message: str = "", accept_url: str = "") -> str:
    parts = [
        "<div style=\"font-family: Arial, sans-serif; color: #0f172a; max-width: 640px;\">",
        f"<p>Hi {escape(job.get('client_name') or 'there')},</p>",
    ]
    if custom_message:
        parts.append(f"<p>{escape(custom_message)}</p>")

    parts.append(f"<h2 style=\"margin-bottom: 4px;\">{escape(job.get('title') or '')}</h2>")
    if job.get("address"):
        parts.append(f"<p style=\"margin-top: 0; color: #64748b;\">{escape(job['address'])}</p>")
    if job.get("ai_summary"):
        parts.append(f"<p>{escape(job['ai_summary'])}</p>")

    sections = [("Scope of Work", _bullets(job.get("ai_scope_of_work"))),
                ("Inclusions", _bullets(job.get("ai_inclusions"))),
                ("Exclusions", _bullets(job.get("ai_exclusions"))),
                ("Materials", _bullets(materials))]
    for heading, items in sections:
        if items:
            parts.append(f"<h3>{heading}</h3><ul>")
            parts += [f"<li>{escape(item)}</li>" for item in items]
            parts.append("</ul>")

    if price_range:
        parts.append(
            f"<p><strong>Estimated price:</strong> {escape(price_range)} (excl. GST)</p>"
        )
    if job.get("ai_client_notes"):
        parts.append(f"<h3>Notes</h3><p>{escape(job['ai_client_notes'])}</p>")
    if accept_url:
        parts.append(
            f"<p><a href=\"{escape(accept_url)}\" style=\"display: inline-block; "
            "padding: 10px 16px; background: #0f172a; color: #ffffff; "
            "border-radius: 8px; text-decoration: none;\">View and respond to quote</a></p>"
        )
    parts.append("</div>")
    return "\n".join(parts)


def send_email(to: str, subject: str, text: str, html: str = None):
    if not settings.smtp_host:
        raise MailError("Email is not configured. Set SMTP_HOST to send emails.")

    sender = settings.mail_from or settings.smtp_username
    msg = EmailMessage()
    msg["To"] = to
    msg["From"] = sender
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid()
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")

    context = ssl.create_default_context()
    try:
        if settings.smtp_use_ssl:
            with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port,
                                  timeout=20, context=context) as smtp:
                if settings.smtp_username:
                    smtp.login(settings.smtp_username, settings.smtp_password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20) as smtp:
                smtp.starttls(context=context)
                if settings.smtp_username:
                    smtp.login(settings.smtp_username, settings.smtp_password)
                smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("email send failed to %s: %s", to, e)
        raise MailError(f"Email failed to send: {type(e).__name__}") from e

    logger.info("email sent to %s (%s)", to, subject)
