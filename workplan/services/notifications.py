"""
Notification service for planning e-mails.
Batches reconciliation outcomes per employee and hands them to a
fire-and-forget mail queue drained by a single consumer loop.
"""
import asyncio
import smtplib
import uuid
from email.message import EmailMessage
from functools import cmp_to_key
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..schemas.planning import format_local_datetime
from .reconciler import ReconciliationResult


log = structlog.get_logger(__name__)

CANCELLED_SUBJECT = "[CANCELLED]: Planning assignment(s)"
ASSIGNED_SUBJECT = "Planning assignment(s)"
LINE_SEPARATOR = "<br>"


class MailMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    to: List[str]
    cc: List[str] = []
    subject: str
    html_body: str


class SmtpTransport:
    """Blocking SMTP delivery; runs in the threadpool."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def __call__(self, message: MailMessage) -> None:
        settings = self.settings
        if not settings.smtp_host or not settings.mail_from:
            raise RuntimeError("SMTP is not configured")
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = settings.mail_from
        msg["To"] = ", ".join(message.to)
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        msg.set_content(message.html_body, subtype="html")
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)


class MailDispatcher:
    """
    Bounded mail queue with one consumer loop.

    ``send_async`` never blocks and never reports delivery back to the
    caller; failures are only logged.
    """

    def __init__(self, transport: Callable[[MailMessage], None], maxsize: int = 256, enabled: bool = True):
        self.transport = transport
        self.enabled = enabled
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._consumer: Optional[asyncio.Task] = None

    def send_async(self, to: List[str], cc: List[str], subject: str, html_body: str) -> None:
        if not self.enabled:
            log.info("mail_skipped_disabled", subject=subject, to=to)
            return
        message = MailMessage(to=to, cc=cc, subject=subject, html_body=html_body)
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            log.warning("mail_queue_full", mail_id=message.id, subject=subject, to=to)
            return
        log.info("mail_queued", mail_id=message.id, subject=subject)

    async def run(self) -> None:
        while True:
            message: MailMessage = await self._queue.get()
            try:
                await run_in_threadpool(self.transport, message)
                log.info("mail_sent", mail_id=message.id, subject=message.subject)
            except Exception as e:
                log.warning("mail_send_failed", mail_id=message.id, subject=message.subject, error=str(e))
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self.run(), name="mail-dispatcher")

    async def flush(self) -> None:
        await self._queue.join()

    async def stop(self, timeout: float = 10.0) -> None:
        if self._consumer is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("mail_queue_not_drained", pending=self._queue.qsize())
        self._consumer.cancel()
        await asyncio.gather(self._consumer, return_exceptions=True)
        self._consumer = None


def _by_entry_start(a: ReconciliationResult, b: ReconciliationResult) -> int:
    start_a, start_b = a.entry.start, b.entry.start
    if start_a is None or start_b is None:
        log.warning("notification_sort_missing_start", entry_a=a.entry.id, entry_b=b.entry.id)
        return 0
    return (start_a > start_b) - (start_a < start_b)


class NotificationBatcher:
    """Merge reconciliation results into one e-mail per employee and kind."""

    def __init__(self, sink: MailDispatcher):
        self.sink = sink

    def dispatch(self, results: List[ReconciliationResult]) -> None:
        cancelled: Dict[Tuple[str, str], List[str]] = {}
        assigned: Dict[Tuple[str, str], List[str]] = {}
        for result in sorted(results, key=cmp_to_key(_by_entry_start)):
            slot = f"{format_local_datetime(result.entry.start)} -> {format_local_datetime(result.entry.end)}"
            for user in result.cancelled_users:
                cancelled.setdefault((user.id, user.email), []).append(
                    f"Project {result.project.name}: You've been unassigned for slot {slot}"
                )
            for user in result.assigned_users:
                assigned.setdefault((user.id, user.email), []).append(
                    f"Project {result.project.name}: You've been assigned for slot {slot}"
                )

        for (_, email), lines in cancelled.items():
            self.sink.send_async([email], [], CANCELLED_SUBJECT, LINE_SEPARATOR.join(lines))
        for (_, email), lines in assigned.items():
            self.sink.send_async([email], [], ASSIGNED_SUBJECT, LINE_SEPARATOR.join(lines))
