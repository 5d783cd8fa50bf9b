"""
mail/dispatch.py -- Fire-and-forget email delivery on a bounded thread pool.

BackgroundMailer exposes the same send_* methods as EmailSender but returns
immediately after submitting the work. The request that triggered the email
never waits on SMTP and never sees its outcome.

Containment: each task runs inside _run(), which logs a False result and any
exception with its traceback. Nothing propagates out of a worker thread, and
a failed send cannot fail or delay the flow that asked for it.

Lifecycle: the FastAPI lifespan creates one mailer and calls shutdown(wait=True)
on exit so queued messages are flushed before the process stops.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from mail.sender import EmailSender, redact_email

logger = logging.getLogger("gatehouse.mail")


class BackgroundMailer:
    def __init__(self, sender: EmailSender, max_workers: int = 4) -> None:
        self.sender = sender
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gatehouse-mail")

    def _run(self, kind: str, to: str, func, *args) -> None:
        try:
            if not func(to, *args):
                logger.warning("%s email to %s was not delivered", kind, redact_email(to))
        except Exception:
            logger.exception("%s email to %s raised", kind, redact_email(to))

    def _submit(self, kind: str, to: str, func, *args) -> Future | None:
        try:
            return self._executor.submit(self._run, kind, to, func, *args)
        except RuntimeError:
            # Executor already shut down; the process is stopping.
            logger.error("Mailer is shut down; dropped %s email to %s", kind, redact_email(to))
            return None

    def send_verification_email(self, to: str, code: str) -> Future | None:
        return self._submit("Verification", to, self.sender.send_verification_email, code)

    def send_two_factor_email(self, to: str, code: str) -> Future | None:
        return self._submit("Two-factor", to, self.sender.send_two_factor_email, code)

    def send_welcome_email(self, to: str, name: str) -> Future | None:
        return self._submit("Welcome", to, self.sender.send_welcome_email, name)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
