from flask import current_app, render_template
from flask_mail import Message

from techformpro.extensions import mail


def send_email(to, subject, body, html=None):
    """Generic email sender."""
    sender = current_app.config.get("MAIL_DEFAULT_SENDER")

    msg = Message(
        subject=subject,
        recipients=[to] if isinstance(to, str) else to,
        sender=sender,
    )
    msg.body = body
    if html:
        msg.html = html

    mail.send(msg)
    current_app.logger.info("Email sent to %s", to)


def send_template_email(to, subject, template, **context):
    """Render ``emails/<template>.txt`` and ``.html`` and send them.

    Email is best effort: failures are logged and reported as False, the
    caller's request still succeeds.
    """
    try:
        body = render_template(f"emails/{template}.txt", **context)
        html = render_template(f"emails/{template}.html", **context)
        send_email(to, subject, body, html)
        return True
    except Exception as e:
        current_app.logger.error("Error sending %s email to %s: %s", template, to, e)
        return False
