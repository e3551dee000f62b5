# price_monitor/notifications/email_notifier.py

"""Price change alert e-mails over SMTP.

Renders an HTML table (plus a plain-text alternative) of the changes
found in one monitoring run and sends it to ``NOTIFICATION_EMAIL``.
Supports STARTTLS (587) or implicit SSL (465).
"""

import logging
import smtplib
from decimal import Decimal
from email.message import EmailMessage
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from price_monitor.config.settings import Settings
from price_monitor.models.price_change import PriceChangeRecord

logger = logging.getLogger("price_monitor.notifier")

_INCREASE_COLOR = "red"
_DECREASE_COLOR = "green"


class NotificationError(RuntimeError):
    """The alert could not be rendered or delivered."""


def _money(value: Decimal | None) -> str:
    return "" if value is None else f"{value:.2f}"


def _signed(text: str, positive: bool) -> str:
    return f"+{text}" if positive else text


def _row(change: PriceChangeRecord) -> dict[str, Any]:
    up = change.is_increase
    percentage = (
        f"{_signed(f'{change.percentage_change:.2f}', up)}%"
        if change.percentage_change is not None
        else "n/a"
    )
    return {
        "name": change.name,
        "url": change.url,
        "old_price": _money(change.old_price),
        "new_price": _money(change.new_price),
        "difference": _signed(_money(change.difference), up),
        "percentage": percentage,
        "color": _INCREASE_COLOR if up else _DECREASE_COLOR,
        "is_on_offer": change.is_on_offer,
        "original_price": _money(change.original_price),
    }


class EmailNotifier:
    """Sends one alert e-mail per monitoring run that found changes."""

    def __init__(
        self,
        sender: str | None = None,
        password: str | None = None,
        recipient: str | None = None,
    ) -> None:
        self.settings = Settings()
        self.sender = sender if sender is not None else self.settings.EMAIL_USER
        self.password = (
            password
            if password is not None
            else self.settings.EMAIL_PASSWORD
        )
        self.recipient = (
            recipient
            or self.settings.NOTIFICATION_EMAIL
            or self.sender
        )
        self._env = Environment(
            loader=FileSystemLoader(str(self.settings.TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    @property
    def configured(self) -> bool:
        return bool(self.sender and self.settings.SMTP_HOST)

    @staticmethod
    def build_subject(changes: list[PriceChangeRecord]) -> str:
        return f"Price Change Alert - {len(changes)} products updated"

    def _context(self, changes: list[PriceChangeRecord]) -> dict[str, Any]:
        return {
            "rows": [_row(c) for c in changes],
            "currency": self.settings.CURRENCY_CODE,
            "dashboard_url": f"{self.settings.APP_URL.rstrip('/')}/products",
        }

    def render_html(self, changes: list[PriceChangeRecord]) -> str:
        template = self._env.get_template("price_change_email.html")
        return template.render(**self._context(changes))

    def render_text(self, changes: list[PriceChangeRecord]) -> str:
        template = self._env.get_template("price_change_email.txt")
        return template.render(**self._context(changes))

    def build_message(
        self, changes: list[PriceChangeRecord],
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg["Subject"] = self.build_subject(changes)
        msg.set_content(self.render_text(changes))
        msg.add_alternative(self.render_html(changes), subtype="html")
        return msg

    def _open_connection(self) -> smtplib.SMTP:
        host = self.settings.SMTP_HOST
        port = self.settings.SMTP_PORT
        timeout = self.settings.SMTP_TIMEOUT
        if self.settings.SMTP_USE_SSL:
            return smtplib.SMTP_SSL(host, port, timeout=timeout)
        server = smtplib.SMTP(host, port, timeout=timeout)
        server.starttls()
        return server

    def notify(self, changes: list[PriceChangeRecord]) -> None:
        """Send the alert for *changes*; nothing is sent for an empty list.

        Raises:
            NotificationError: Mail is not configured or delivery failed.
        """
        if not changes:
            logger.debug("No price changes, no alert sent")
            return
        if not self.configured:
            raise NotificationError(
                "Email not configured (EMAIL_USER/SMTP_HOST missing)"
            )

        msg = self.build_message(changes)
        try:
            server = self._open_connection()
            try:
                if self.password:
                    server.login(self.sender, self.password)
                server.send_message(msg)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Failed to send alert: {exc}") from exc

        logger.info(
            "Price change alert sent to %s (%d changes)",
            self.recipient,
            len(changes),
        )

    __call__ = notify
