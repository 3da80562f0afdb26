"""
Out-of-band approval for tier-3 secret access.

Sends an Approve / Deny prompt to the operator's chat and long-polls the update
feed until a matching button press arrives or the timeout elapses. The caller
blocks for the whole exchange; every call gets a fresh, unguessable request id
embedded in the button callback data so concurrent requests never cross-route.

The getUpdates cursor moves past updates no pending request can want (other
chats, non-approval data, expired request ids) and is confirmed once the
exchange ends, so old presses never crowd out new ones.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

from ganesh.mfa.telegram import TelegramError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
POLL_TIMEOUT = 10  # server-side long-poll per round, seconds
POLL_BACKOFF = 2.0  # pause between rounds, seconds

HEADER = "\U0001f510 <b>Tier 3 Secret Access Request</b>"

_REQUEST_ID = re.compile(r"^mfa_(\d+)_\w+$")


class ChatTransport(Protocol):
    async def send_message(
        self, chat_id: str, text: str, *, buttons: list[tuple[str, str]] | None = None
    ) -> int: ...

    async def edit_message_text(self, chat_id: str, message_id: int, text: str) -> None: ...

    async def answer_callback_query(self, callback_query_id: str, text: str = "") -> None: ...

    async def get_updates(
        self,
        *,
        offset: int | None = None,
        timeout: int = POLL_TIMEOUT,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]: ...


class ApprovalOutcome(StrEnum):
    APPROVED = "approved"
    DENIED = "denied"
    TIMED_OUT = "timed_out"
    FAILED = "failed"  # prompt could not be delivered


@dataclass(frozen=True)
class ApprovalResult:
    outcome: ApprovalOutcome
    error: str | None = None
    request_id: str | None = None

    @property
    def approved(self) -> bool:
        return self.outcome is ApprovalOutcome.APPROVED


@dataclass
class ApprovalRequest:
    request_id: str
    secret_id: str
    group_name: str
    sent_message_id: int
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MfaConfig:
    bot_token: str
    chat_id: str
    timeout: float = DEFAULT_TIMEOUT


def generate_request_id() -> str:
    """Millisecond timestamp plus 64 random bits."""
    return f"mfa_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def _status_text(request: ApprovalRequest, status: str) -> str:
    return "\n".join(
        [
            HEADER,
            "",
            f"<b>Secret:</b> <code>{html.escape(request.secret_id)}</code>",
            f"<b>Status:</b> {status}",
            f"<b>Time:</b> {datetime.now(UTC).strftime('%H:%M:%S')} UTC",
        ]
    )


class MfaApprover:
    """Run approve/deny exchanges for one operator chat."""

    def __init__(
        self,
        transport: ChatTransport,
        chat_id: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        poll_timeout: int = POLL_TIMEOUT,
        backoff: float = POLL_BACKOFF,
        requested_by: str = "ganesh",
        clock: Callable[[], float] = time.monotonic,
        offset: int | None = None,
    ) -> None:
        self.transport = transport
        self.chat_id = str(chat_id)
        self.timeout = timeout
        self.poll_timeout = poll_timeout
        self.backoff = backoff
        self.requested_by = requested_by
        self._clock = clock
        # getUpdates cursor: updates below it are confirmed and never redelivered
        self.offset = offset

    async def request(self, secret_id: str, group_name: str) -> ApprovalResult:
        """Prompt the operator and wait for a terminal outcome."""
        request_id = generate_request_id()
        prompt = "\n".join(
            [
                HEADER,
                "",
                f"<b>Secret:</b> <code>{html.escape(secret_id)}</code>",
                f"<b>Group:</b> {html.escape(group_name)}",
                f"<b>Requested by:</b> {html.escape(self.requested_by)}",
                "",
                f"⏳ Respond within {int(self.timeout)} seconds",
            ]
        )
        try:
            message_id = await self.transport.send_message(
                self.chat_id,
                prompt,
                buttons=[
                    ("✅ Approve", f"{request_id}:approve"),
                    ("❌ Deny", f"{request_id}:deny"),
                ],
            )
        except TelegramError as e:
            logger.error("mfa: failed to send approval request for %s: %s", secret_id, e)
            return ApprovalResult(ApprovalOutcome.FAILED, error=str(e), request_id=request_id)

        request = ApprovalRequest(
            request_id=request_id,
            secret_id=secret_id,
            group_name=group_name,
            sent_message_id=message_id,
        )
        return await self._poll(request)

    def _callback_data(self, update: dict[str, Any]) -> tuple[str, str] | None:
        """(data, callback_query_id) for a button press in the operator chat."""
        callback = update.get("callback_query")
        if not isinstance(callback, dict):
            return None
        data = callback.get("data")
        if not isinstance(data, str):
            return None
        chat_id = ((callback.get("message") or {}).get("chat") or {}).get("id")
        if str(chat_id) != self.chat_id:
            return None
        return data, str(callback.get("id", ""))

    def _match(self, update: dict[str, Any], request: ApprovalRequest) -> tuple[str, str] | None:
        """Return (action, callback_query_id) if the update answers ``request``."""
        pressed = self._callback_data(update)
        if pressed is None:
            return None
        data, callback_id = pressed
        request_id, sep, action = data.rpartition(":")
        if not sep or request_id != request.request_id:
            return None
        return action, callback_id

    def _may_be_live(self, update: dict[str, Any]) -> bool:
        """True for another request's button press that could still be awaited."""
        pressed = self._callback_data(update)
        if pressed is None:
            return False
        id_match = _REQUEST_ID.match(pressed[0].rpartition(":")[0])
        if id_match is None:
            return False
        age_ms = time.time() * 1000 - int(id_match.group(1))
        return age_ms <= self.timeout * 1000

    def _advance(self, update: dict[str, Any]) -> None:
        update_id = update.get("update_id")
        if isinstance(update_id, int) and (self.offset is None or update_id >= self.offset):
            self.offset = update_id + 1

    async def _confirm(self) -> None:
        """Acknowledge everything below the cursor so the feed does not back up."""
        if self.offset is None:
            return
        try:
            await self.transport.get_updates(
                offset=self.offset, timeout=0, allowed_updates=["callback_query"]
            )
        except TelegramError as e:
            logger.debug("mfa: confirming updates failed: %s", e)

    async def _finish(
        self, request: ApprovalRequest, callback_id: str | None, ack: str, status: str
    ) -> None:
        """Acknowledge the button press and stamp the prompt. Best effort."""
        if callback_id:
            try:
                await self.transport.answer_callback_query(callback_id, ack)
            except TelegramError as e:
                logger.debug("mfa: answerCallbackQuery failed: %s", e)
        try:
            await self.transport.edit_message_text(
                self.chat_id, request.sent_message_id, _status_text(request, status)
            )
        except TelegramError as e:
            logger.debug("mfa: editMessageText failed: %s", e)
        await self._confirm()

    async def _poll(self, request: ApprovalRequest) -> ApprovalResult:
        deadline = self._clock() + self.timeout

        while self._clock() < deadline:
            remaining = deadline - self._clock()
            try:
                updates = await self.transport.get_updates(
                    offset=self.offset,
                    timeout=max(1, min(self.poll_timeout, int(remaining))),
                    allowed_updates=["callback_query"],
                )
            except TelegramError as e:
                logger.warning("mfa: poll failed, retrying: %s", e)
                updates = []

            # The cursor stops at the first press another pending request may still want
            advancing = True
            for update in updates:
                matched = self._match(update, request)
                if matched is None and self._may_be_live(update):
                    advancing = False
                elif advancing:
                    self._advance(update)
                if matched is None:
                    continue
                action, callback_id = matched
                if action == "approve":
                    await self._finish(request, callback_id, "✅ Approved!", "✅ APPROVED")
                    return ApprovalResult(ApprovalOutcome.APPROVED, request_id=request.request_id)
                if action == "deny":
                    await self._finish(request, callback_id, "❌ Denied", "❌ DENIED")
                    return ApprovalResult(
                        ApprovalOutcome.DENIED,
                        error="Request denied by user",
                        request_id=request.request_id,
                    )

            pause = min(self.backoff, deadline - self._clock())
            if pause > 0:
                await asyncio.sleep(pause)

        await self._finish(request, None, "", "⌛ EXPIRED")
        return ApprovalResult(
            ApprovalOutcome.TIMED_OUT,
            error="Approval request timed out",
            request_id=request.request_id,
        )
