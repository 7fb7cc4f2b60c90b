"""
Relay orchestrator: one chat turn from user message to streamed answer.

For each turn the orchestrator echoes the user's message, streams the model
provider's response through the upstream parser and re-frames every delta
as client events on the caller's push session. Reasoning and answer traces
are kept apart: the reasoning block is always opened and closed around its
chunks, and closed before the first answer chunk.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chat_relay.db.repository import MessageRepository
from chat_relay.streaming import events
from chat_relay.streaming.events import ClientEvent
from chat_relay.streaming.manager import SessionRegistry
from chat_relay.upstream.client import ModelProviderClient, UpstreamError
from chat_relay.upstream.parser import AnswerChunk, ReasoningChunk, UpstreamDelta, iter_deltas

logger = logging.getLogger(__name__)


class TurnPhase(str, Enum):
    """Where a turn is in the reasoning -> answer progression."""

    WAITING = "waiting"
    REASONING = "reasoning"
    ANSWERING = "answering"


@dataclass
class ChatTurn:
    """One user-message-to-assistant-response cycle."""

    user_id: int
    client_id: str
    user_text: str
    turn_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    phase: TurnPhase = TurnPhase.WAITING
    reasoning_parts: list[str] = field(default_factory=list)
    answer_parts: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def reasoning_text(self) -> str:
        return "".join(self.reasoning_parts)

    @property
    def answer_text(self) -> str:
        return "".join(self.answer_parts)

    @property
    def reasoning_open(self) -> bool:
        return self.phase == TurnPhase.REASONING


class RelayOrchestrator:
    """
    Runs chat turns against the model provider.

    Turns are submitted as background tasks so the submitting request can
    return immediately; output appears on the caller's push session. A turn
    whose session disappears keeps draining the provider stream so the
    upstream connection is released, and its sends become no-ops.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        provider: ModelProviderClient,
        messages: MessageRepository | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            registry: Session registry used to reach clients
            provider: Streaming client for the model provider
            messages: Optional history store; writes are best effort
        """
        self._registry = registry
        self._provider = provider
        self._messages = messages
        self._active_turns: dict[str, asyncio.Task] = {}

    @property
    def active_turn_count(self) -> int:
        return len(self._active_turns)

    def submit(self, user_id: int, client_id: str, text: str) -> asyncio.Task:
        """
        Start a turn in the background.

        Returns:
            The task running the turn
        """
        turn_key = uuid.uuid4().hex
        task = asyncio.create_task(
            self.relay(user_id, client_id, text),
            name=f"relay-{client_id}-{turn_key[:8]}",
        )
        self._active_turns[turn_key] = task
        task.add_done_callback(lambda t: self._on_turn_done(turn_key, t))
        return task

    def _on_turn_done(self, turn_key: str, task: asyncio.Task) -> None:
        self._active_turns.pop(turn_key, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Relay task {task.get_name()} crashed: {exc!r}")

    async def relay(self, user_id: int, client_id: str, text: str) -> ChatTurn:
        """
        Run one chat turn to completion.

        Args:
            user_id: Authenticated sender
            client_id: Push session that receives the output
            text: The user's message

        Returns:
            The finished turn with accumulated reasoning and answer text
        """
        turn = ChatTurn(user_id=user_id, client_id=client_id, user_text=text)
        logger.info(f"Turn {turn.turn_id} started for user {user_id} (client {client_id})")

        await self._send(turn, events.user_message(text))
        await self._persist(user_id, "user", text, client_id)
        await self._send(turn, events.ai_thinking(True))

        try:
            async with self._provider.stream_chat(text) as chunks:
                async for delta in iter_deltas(chunks):
                    await self._apply_delta(turn, delta)
                if not turn.reasoning_parts and not turn.answer_parts:
                    raise UpstreamError("Model provider returned an empty or unrecognized response")
        except UpstreamError as e:
            turn.error = str(e)
            logger.error(f"Turn {turn.turn_id} failed: {e}")
            await self._close_reasoning(turn)
            await self._send(turn, events.system(f"AI service error: {e}"))
            await self._send(turn, events.ai_thinking(False))
            return turn

        await self._close_reasoning(turn)
        await self._send(turn, events.ai_thinking(False))

        if turn.answer_text:
            await self._persist(
                user_id,
                "ai",
                turn.answer_text,
                client_id,
                reasoning=turn.reasoning_text or None,
            )

        logger.info(
            f"Turn {turn.turn_id} finished: {len(turn.reasoning_text)} reasoning chars, "
            f"{len(turn.answer_text)} answer chars"
        )
        return turn

    async def _apply_delta(self, turn: ChatTurn, delta: UpstreamDelta) -> None:
        """Advance the turn's phase and emit the events for one delta."""
        if isinstance(delta, ReasoningChunk):
            turn.reasoning_parts.append(delta.text)

            if turn.phase == TurnPhase.ANSWERING:
                # The reasoning block is already closed on the client
                logger.debug(f"Turn {turn.turn_id}: reasoning after answer, not forwarded")
                return

            if turn.phase == TurnPhase.WAITING:
                turn.phase = TurnPhase.REASONING
                await self._send(turn, events.thinking_process_start())

            await self._send(turn, events.thinking_process_chunk(delta.text))

        elif isinstance(delta, AnswerChunk):
            if turn.phase == TurnPhase.REASONING:
                await self._close_reasoning(turn)
            turn.phase = TurnPhase.ANSWERING

            turn.answer_parts.append(delta.text)
            await self._send(turn, events.message_chunk(delta.text))

    async def _close_reasoning(self, turn: ChatTurn) -> None:
        if turn.reasoning_open:
            turn.phase = TurnPhase.ANSWERING
            await self._send(turn, events.thinking_process_end())

    async def _send(self, turn: ChatTurn, event: ClientEvent) -> bool:
        return await self._registry.send(turn.client_id, event)

    async def _persist(self, user_id: int, role: str, content: str, client_id: str, **kwargs: Any) -> None:
        """Best-effort history write; failures are logged and ignored."""
        if self._messages is None:
            return
        try:
            await asyncio.to_thread(
                self._messages.save_message,
                user_id,
                role,
                content,
                client_id,
                **kwargs,
            )
        except Exception as e:
            logger.error(f"Failed to save {role} message for user {user_id}: {e}")

    async def stop(self) -> None:
        """Cancel every in-flight turn."""
        tasks = list(self._active_turns.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Relay orchestrator stopped, cancelled {len(tasks)} turns")
