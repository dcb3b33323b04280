"""Outbound email for verification and password-reset codes.

Backends are picked by MAIL_BACKEND: `console` (log only), `smtp`, or `api`
(an HTTP mail API accepting a Resend-style JSON payload).
"""
from abc import ABC, abstractmethod
import asyncio
import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from . import config
from .errors import DeliveryFailed

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / 'templates' / 'email'

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(['html']),
)


def render_verification_email(code: str, ttl_minutes: int) -> str:
    return _env.get_template('verification.html').render(code=code, ttl_minutes=ttl_minutes)


def render_reset_email(code: str, ttl_minutes: int) -> str:
    return _env.get_template('password_reset.html').render(code=code, ttl_minutes=ttl_minutes)


class Mailer(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html: str) -> None:
        """Deliver one HTML message; raise DeliveryFailed when it cannot be sent."""


class ConsoleMailer(Mailer):
    """Development mailer: writes messages to the log instead of sending."""

    async def send(self, to: str, subject: str, html: str) -> None:
        logger.info('console mail to=%s subject=%r\n%s', to, subject, html)


class SmtpMailer(Mailer):
    def __init__(self, host: str, port: int, username: str | None = None, password: str | None = None,
                 use_tls: bool = True, sender: str = config.MAIL_FROM, timeout: int = 30):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def _build(self, to: str, subject: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg['From'] = self.sender
        msg['To'] = to
        msg['Subject'] = subject
        msg.set_content('This message requires an HTML capable mail client.')
        msg.add_alternative(html, subtype='html')
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or '')
            smtp.send_message(msg)

    async def send(self, to: str, subject: str, html: str) -> None:
        msg = self._build(to, subject, html)
        try:
            # smtplib blocks; keep it off the event loop
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.exception('failed to send mail to %s via %s:%s', to, self.host, self.port)
            raise DeliveryFailed(f'Failed to send email: {e}') from e


class ApiMailer(Mailer):
    """Posts messages to an HTTP mail API (Resend-style JSON payload)."""

    def __init__(self, api_url: str, api_key: str | None, sender: str = config.MAIL_FROM,
                 timeout: int = 10, transport: httpx.AsyncBaseTransport | None = None):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    async def send(self, to: str, subject: str, html: str) -> None:
        if not self.api_key:
            raise DeliveryFailed('Failed to send email: MAIL_API_KEY is not configured')
        payload = {'from': self.sender, 'to': [to], 'subject': subject, 'html': html}
        headers = {'Authorization': f'Bearer {self.api_key}'}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.exception('failed to send mail to %s via %s', to, self.api_url)
            raise DeliveryFailed(f'Failed to send email: {e}') from e
        if r.status_code not in (200, 201, 202):
            logger.error('mail API rejected message to %s: %s %s', to, r.status_code, r.text[:200])
            raise DeliveryFailed(f'Failed to send email: mail API returned {r.status_code}')


def build_mailer() -> Mailer:
    if config.MAIL_BACKEND == 'smtp':
        return SmtpMailer(
            config.SMTP_HOST,
            config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            use_tls=config.SMTP_USE_TLS,
            sender=config.MAIL_FROM,
            timeout=config.SMTP_TIMEOUT_SECONDS,
        )
    if config.MAIL_BACKEND == 'api':
        return ApiMailer(
            config.MAIL_API_URL,
            config.MAIL_API_KEY,
            sender=config.MAIL_FROM,
            timeout=config.MAIL_API_TIMEOUT_SECONDS,
        )
    if config.MAIL_BACKEND != 'console':
        logger.warning('unknown MAIL_BACKEND %r; falling back to console', config.MAIL_BACKEND)
    return ConsoleMailer()


_mailer: Mailer | None = None


def get_mailer() -> Mailer:
    """FastAPI dependency returning the process-wide mailer."""
    global _mailer
    if _mailer is None:
        _mailer = build_mailer()
    return _mailer
