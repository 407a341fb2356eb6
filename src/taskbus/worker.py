"""
Email delivery worker.

Each iteration claims at most one queue entry and makes exactly one delivery
attempt for it:

- invalid recipient  -> dead letter (validation error), entry removed
- delivery failure   -> dead letter (delivery error), entry removed
- success            -> entry removed

There is no retry of a failed entry. Between iterations the loop sleeps
according to the outcome: idle interval on an empty queue, error interval when
storage failed, no sleep after a completed job.
"""

import asyncio
import logging
from typing import Callable, Optional

from taskbus.config import LiveSettings
from taskbus.errors import InvalidPayload
from taskbus.mailer import EmailSender, confirmation_message, parse_email
from taskbus.queue_backend import QueueBackend
from taskbus.types import DeadLetterRecord, EmailMessage, ExecutionOutcome, QueueEntry

logger = logging.getLogger(__name__)

MessageFactory = Callable[[QueueEntry], EmailMessage]


async def try_execute_task(
    queue: QueueBackend,
    sender: EmailSender,
    render: MessageFactory,
) -> ExecutionOutcome:
    """
    Claim one entry and attempt delivery once.
    Returns EMPTY or COMPLETED; storage errors propagate after the claim is aborted.
    """
    claim = await queue.dequeue_one()
    if claim is None:
        return ExecutionOutcome.EMPTY
    entry = claim.entry
    try:
        try:
            recipient = parse_email(entry.email)
            message = render(entry)
            await sender.send(
                recipient, message.subject, message.html_body, message.text_body
            )
        except InvalidPayload as e:
            await queue.record_failure(claim, DeadLetterRecord.for_email(entry, e))
            logger.error(
                "skipping confirmation email for task %s, stored details are invalid: %s",
                entry.task_id,
                e,
                exc_info=e,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            # any sender failure counts as the one delivery attempt
            await queue.record_failure(claim, DeadLetterRecord.for_email(entry, e))
            logger.error(
                "failed to deliver confirmation email for task %s, skipping: %s",
                entry.task_id,
                e,
                exc_info=e,
            )
        await queue.complete(claim)
    except BaseException:
        await queue.abort(claim)
        raise
    return ExecutionOutcome.COMPLETED


class Worker:
    """
    Polls the queue forever.

    Intervals come from LiveSettings on every iteration, so a reload_config
    command changes them without restarting the worker.
    """

    def __init__(
        self,
        queue: QueueBackend,
        sender: EmailSender,
        settings: LiveSettings,
        *,
        render: Optional[MessageFactory] = None,
    ) -> None:
        self.queue = queue
        self.sender = sender
        self.settings = settings
        self._render = render or self._confirmation

    def _confirmation(self, entry: QueueEntry) -> EmailMessage:
        return confirmation_message(entry, self.settings.get().application.frontend_url)

    async def run_once(self) -> ExecutionOutcome:
        """One iteration without the sleep; storage failures map to ERROR."""
        try:
            return await try_execute_task(self.queue, self.sender, self._render)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("worker: iteration failed: %s", e, exc_info=e)
            return ExecutionOutcome.ERROR

    def backoff(self, outcome: ExecutionOutcome) -> float:
        """Seconds to sleep after an iteration with this outcome."""
        intervals = self.settings.get().queue
        if outcome is ExecutionOutcome.EMPTY:
            return intervals.idle_interval
        if outcome is ExecutionOutcome.ERROR:
            return intervals.error_interval
        return 0.0

    async def run_forever(self) -> None:
        """Run until cancelled."""
        logger.info("email worker started")
        while True:
            outcome = await self.run_once()
            # sleep(0) after a completed job still yields to the other units
            await asyncio.sleep(self.backoff(outcome))
