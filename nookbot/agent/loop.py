"""Agent loop: the core processing engine."""

import asyncio
import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from nookbot.agent.conversation import Conversation, ToolResult
from nookbot.agent.gateway import ToolGateway
from nookbot.agent.tools.registry import ToolRegistry
from nookbot.bus.events import InboundMessage, OutboundMessage
from nookbot.bus.queue import MessageBus
from nookbot.core.dedup import EventDeduplicator
from nookbot.core.ratelimit import MODEL, RateLimiters
from nookbot.errors import GENERIC_TEXT, DuplicateEvent, classify_upstream_error, user_message
from nookbot.providers.base import LLMProvider
from nookbot.utils.sanitizer import sanitize_object, sanitize_text

NO_RESPONSE_TEXT = "I don't have a response for that right now! 🍂"
TRUNCATED_TEXT = "I need to think about this in smaller steps! Let me try again with a simpler approach. 🍂"
UNEXPECTED_TEXT = "Oops! Something unexpected happened on my end 🍂"
ITERATION_LIMIT_TEXT = (
    "I got a bit carried away thinking about this! 😅 "
    "Let me know if you'd like me to try again with a simpler approach."
)

DEFAULT_SYSTEM_PROMPT = (
    "You are {name}, the friendly assistant of this Discord server. You are warm "
    "and welcoming, and you help members by inspecting and managing the server "
    "with your tools. Use inspection tools (list_channels, list_roles) BEFORE "
    "making changes to see what exists. Keep responses concise (2-4 sentences "
    "usually) but complete."
)

# Phrases that contain the bot's name but are not addressed to it
_FALSE_POSITIVES = ("{n} day", "{n} weather", "it's {n}", "its {n}", "{n} outside", "{n} side up")


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class LoopOutcome:
    """How one agent loop run ended."""
    text: str
    state: LoopState
    reason: str  # natural_end | truncated | unknown_stop | iteration_bound | upstream_error
    iterations: int
    tools_used: list[str] = field(default_factory=list)
    conversation: Conversation | None = None

    @property
    def completed(self) -> bool:
        return self.state == LoopState.DONE


class AgentLoop:
    """
    The agent loop is the core processing engine.

    It:
    1. Receives messages from the bus and drops redelivered events
    2. Calls the LLM with the conversation and tool catalogue
    3. Runs requested tools through the ToolGateway
    4. Repeats until the model answers or the iteration bound is hit
    5. Sends the response back
    """

    def __init__(
        self,
        bus: MessageBus,
        provider: LLMProvider,
        gateway: ToolGateway,
        registry: ToolRegistry | None = None,
        limiters: RateLimiters | None = None,
        deduplicator: EventDeduplicator | None = None,
        model: str | None = None,
        max_iterations: int = 20,
        temperature: float = 0.7,
        max_tokens: int = 3000,
        system_prompt: str | None = None,
        name: str = "Sunny",
        owner_ids: list[str] | None = None,
    ):
        self.bus = bus
        self.provider = provider
        self.gateway = gateway
        self.tools = registry or gateway.registry
        self.limiters = limiters
        self.dedup = deduplicator or EventDeduplicator()
        self.model = model or provider.get_default_model()
        self.max_iterations = max_iterations
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.name = name
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT.format(name=name)
        self.owner_ids = set(owner_ids or [])

        self._name_pattern = re.compile(rf"\b{re.escape(name.lower())}\b")
        self._false_positives = [p.format(n=name.lower()) for p in _FALSE_POSITIVES]
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    async def run_agent_loop(
        self,
        conversation: Conversation,
        tools: list[dict[str, Any]] | None = None,
        actor_id: str = "",
        scope_id: str = "",
    ) -> LoopOutcome:
        """
        Run the agent iteration loop.

        Args:
            conversation: Seed conversation; turns are appended in place.
            tools: Tool catalogue; defaults to every registered tool.
            actor_id: Who the loop acts for.
            scope_id: Guild/workspace the loop acts on.

        Returns:
            LoopOutcome with the final text and how the loop ended.
        """
        tool_defs = tools if tools is not None else self.tools.get_definitions()
        iteration = 0
        tools_used: list[str] = []

        def finish(text: str, state: LoopState, reason: str) -> LoopOutcome:
            return LoopOutcome(text, state, reason, iteration, tools_used, conversation)

        while iteration < self.max_iterations:
            iteration += 1

            try:
                if self.limiters is not None and self.limiters.has(MODEL):
                    await self.limiters.acquire(MODEL)
                response = await self.provider.chat(
                    messages=conversation.to_messages(),
                    tools=tool_defs or None,
                    model=self.model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
            except Exception as e:
                error = classify_upstream_error(e) or e
                detail = sanitize_text(f"{type(e).__name__}: {e}")
                logger.error(f"Agent loop: model call failed on iteration {iteration}: {detail}")
                return finish(user_message(error), LoopState.ABORTED, "upstream_error")

            # Cut-off output: tool arguments may be incomplete, so nothing runs
            if response.is_truncated:
                logger.warning(f"Agent loop: hit max tokens on iteration {iteration}")
                return finish(TRUNCATED_TEXT, LoopState.ABORTED, "truncated")

            if response.has_tool_calls:
                conversation.append_assistant(response.content, response.tool_calls)
                results: list[ToolResult] = []
                for tool_call in response.tool_calls:
                    tools_used.append(tool_call.name)
                    args_str = json.dumps(sanitize_object(tool_call.arguments), ensure_ascii=False, default=str)
                    logger.info(f"Tool call: {tool_call.name}({args_str[:200]})")
                    results.append(await self._invoke_tool(tool_call.id, tool_call.name, tool_call.arguments, actor_id, scope_id))
                conversation.append_tool_results(results)
                continue

            if response.is_final:
                logger.info(f"Agent loop complete after {iteration} iteration(s)")
                return finish(response.text or NO_RESPONSE_TEXT, LoopState.DONE, "natural_end")

            logger.warning(f"Agent loop: unexpected finish reason '{response.finish_reason}'")
            return finish(UNEXPECTED_TEXT, LoopState.ABORTED, "unknown_stop")

        logger.error(f"Agent loop: hit max iterations ({self.max_iterations})")
        return finish(ITERATION_LIMIT_TEXT, LoopState.ABORTED, "iteration_bound")

    async def _invoke_tool(
        self,
        tool_call_id: str,
        name: str,
        arguments: Any,
        actor_id: str,
        scope_id: str,
    ) -> ToolResult:
        """Gateway call that always yields a result, so every request gets an answer."""
        try:
            result = await self.gateway.invoke(name, arguments, actor_id, scope_id, tool_call_id=tool_call_id)
        except Exception as e:
            detail = sanitize_text(str(e) or type(e).__name__)
            logger.error(f"Tool {name} raised through the gateway: {type(e).__name__}: {detail}")
            return ToolResult.failure(tool_call_id, detail, name)
        preview = result.to_content()
        logger.debug(f"Tool result: {name} → {preview[:200]}")
        return result

    # ── Inbound pipeline ─────────────────────────────────────────────

    async def run(self) -> None:
        """Run the agent loop, processing messages from the bus."""
        self._running = True
        for service in (self.dedup, self.gateway.cache, self.gateway.idempotency):
            service.start()
        logger.info("Agent loop started")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            if not self._should_respond(msg):
                continue

            task = asyncio.create_task(self._handle(msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _handle(self, msg: InboundMessage) -> None:
        try:
            response = await self.process_message(msg)
            if response:
                await self.bus.publish_outbound(response)
        except Exception as e:
            logger.opt(exception=e).error(
                f"Error processing message {msg.event_id}: {sanitize_text(f'{type(e).__name__}: {e}')}"
            )
            await self.bus.publish_outbound(OutboundMessage(
                channel=msg.channel,
                chat_id=msg.chat_id,
                content=GENERIC_TEXT,
                reply_to=msg.event_id or None,
            ))

    def stop(self) -> None:
        """Stop the agent loop."""
        self._running = False
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        for service in (self.dedup, self.gateway.cache, self.gateway.idempotency):
            service.stop()
        logger.info("Agent loop stopping")

    def _should_respond(self, msg: InboundMessage) -> bool:
        """Reply, @mention, or the bot's name used as an address."""
        if msg.metadata.get("is_bot"):
            return False
        if msg.channel != "discord":
            return True
        if msg.metadata.get("is_reply_to_bot") or msg.metadata.get("mentions_bot"):
            return True
        content = msg.content.lower()
        if any(p in content for p in self._false_positives):
            return False
        return bool(self._name_pattern.search(content))

    def _build_conversation(self, content: str, actor_id: str, scope_id: str, author: str = "") -> Conversation:
        today = datetime.now().strftime("%A, %B %d, %Y")
        owner = " (SERVER OWNER)" if actor_id in self.owner_ids else ""
        who = f"{author} (ID: {actor_id})" if author else actor_id
        lines = [f"Current date: {today}", f"Current user: {who}{owner}"]
        if scope_id:
            lines.append(f"Current server: {scope_id}")

        conversation = Conversation(system_prompt=self.system_prompt)
        conversation.append_user("\n".join(lines) + f"\n\nUser message: {content}")
        return conversation

    async def process_message(self, msg: InboundMessage) -> OutboundMessage | None:
        """
        Handle one inbound message end to end.

        Returns None for a redelivered event: duplicates never start a loop.
        """
        execution_id = uuid.uuid4().hex[:12]
        if msg.event_id:
            try:
                self.dedup.ensure_new(msg.event_id, execution_id)
            except DuplicateEvent as e:
                logger.warning(f"{e.message} (first execution {e.first_execution_id}), skipping")
                return None

        preview = msg.content[:80] + "..." if len(msg.content) > 80 else msg.content
        logger.info(f"Processing message from {msg.channel}:{msg.sender_id} [{execution_id}]: {preview}")

        conversation = self._build_conversation(
            msg.content, msg.actor_id, msg.scope_id, msg.metadata.get("author_name", "")
        )
        outcome = await self.run_agent_loop(conversation, actor_id=msg.actor_id, scope_id=msg.scope_id)
        logger.info(
            f"Execution {execution_id} ended: {outcome.reason} after {outcome.iterations} iteration(s), "
            f"tools: {outcome.tools_used}"
        )
        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=outcome.text,
            reply_to=msg.event_id or None,
            metadata={"execution_id": execution_id, "reason": outcome.reason},
        )

    async def process_direct(self, content: str, actor_id: str = "cli:user", scope_id: str = "") -> str:
        """
        Process a message directly (for CLI usage).

        Args:
            content: The message content.
            actor_id: Who is asking.
            scope_id: Guild the request acts on, if any.

        Returns:
            The agent's response.
        """
        conversation = self._build_conversation(content, actor_id, scope_id)
        outcome = await self.run_agent_loop(conversation, actor_id=actor_id, scope_id=scope_id)
        return outcome.text
