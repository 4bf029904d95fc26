"""Control loop of the usage bridge."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)

from usage_bridge.bridge.context import BridgeContext
from usage_bridge.bridge.errors import (
    BridgeError,
    CursorInvalidError,
    StoreError,
    StoreWriteConflictError,
    TokenAcquisitionError,
    UsageReportError,
)
from usage_bridge.bridge.models import Checkpoint, EventOutcome, ReportOutcome, UsageEvent
from usage_bridge.bridge.tokens import start_token_sources
from usage_bridge.telemetry import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class BridgeState(str, Enum):
    """Lifecycle states of the bridge scheduler."""

    IDLE = "idle"
    ACQUIRING_TOKENS = "acquiring_tokens"
    RESOLVING_GUIDS = "resolving_guids"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SCHEDULED = "scheduled"
    STOPPED = "stopped"


class BridgeScheduler:
    """Runs polling passes one after the other.

    Startup (tokens, service GUIDs, checkpoint) is retried until it works.
    After that, every pass walks the events after the checkpoint; a pass that
    succeeds is followed by the next one after ``min_interval``, a failed one
    after the next backoff delay.
    """

    def __init__(
        self,
        context: BridgeContext,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the scheduler.

        Args:
            context: Bridge components.
            sleep: Coroutine used to wait between passes (seconds).
        """
        self._context = context
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._state = BridgeState.IDLE

        self._pass_count = 0
        self._last_pass_at: datetime | None = None
        self._last_pass_succeeded: bool | None = None
        self._next_delay_ms: int | None = None

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the control loop in the background."""
        if self.is_running:
            logger.warning("Bridge scheduler already running")
            return

        logger.info("Starting %s bridge", self._context.settings.bridge_type)
        self._task = asyncio.create_task(self._run(), name="usage_bridge")

    async def stop(self) -> None:
        """Stop the control loop and wait for the running pass to be cancelled."""
        if self._task is None:
            self._state = BridgeState.STOPPED
            return

        logger.info("Stopping bridge scheduler")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.exception("Bridge scheduler ended with an error: %s", e)
        self._task = None
        self._state = BridgeState.STOPPED
        logger.info("Bridge scheduler stopped")

    async def _run(self) -> None:
        context = self._context
        while True:
            try:
                await self.prepare()
                break
            except Exception as e:
                logger.exception("Preparing the bridge failed: %s", e)
                context.errors.register_error("Error preparing the bridge", e)
                self._state = BridgeState.FAILED
                await self._sleep(context.settings.startup_retry_interval_seconds)

        while True:
            try:
                succeeded = await self.run_pass()
            except Exception as e:
                logger.exception("Polling pass failed: %s", e)
                context.statistics.passes.failed += 1
                context.errors.register_error("Error processing usage events", e)
                self._last_pass_succeeded = succeeded = False
                self._state = BridgeState.FAILED

            delay = self.next_delay(succeeded)
            self._state = BridgeState.SCHEDULED
            logger.debug("Next pass in %d ms", delay)
            await self._sleep(delay / 1000)

    async def prepare(self) -> None:
        """Acquire tokens, resolve service GUIDs and load the checkpoint."""
        context = self._context
        interval = context.settings.startup_retry_interval_seconds

        self._state = BridgeState.ACQUIRING_TOKENS
        await start_token_sources(
            context.token_sources, interval, on_failure=self._on_token_failure
        )
        context.errors.missing_token = False

        if context.guid_resolver is not None and context.services:
            self._state = BridgeState.RESOLVING_GUIDS
            await context.guid_resolver.resolve_guids_forever(context.services, interval)
            logger.info("Tracking services %s", context.resource_guids())

        retryer = AsyncRetrying(
            stop=stop_never,
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(StoreError),
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                await context.progress.read()

    def next_delay(self, succeeded: bool) -> int:
        """Delay in milliseconds before the pass following one that ended so."""
        delay_generator = self._context.delay
        if succeeded:
            delay_generator.reset()
            self._next_delay_ms = delay_generator.min_interval
        else:
            self._next_delay_ms = delay_generator.next()
        return self._next_delay_ms

    async def run_pass(self) -> bool:
        """Run one polling pass.

        Returns:
            Whether the pass succeeded.
        """
        context = self._context
        self._state = BridgeState.POLLING
        self._pass_count += 1
        self._last_pass_at = datetime.now(UTC)

        outcome: dict[str, bool] = {}

        async def succeeded() -> None:
            outcome["succeeded"] = True
            await self._on_pass_succeeded()

        async def failed(error: BridgeError) -> None:
            outcome["succeeded"] = False
            await self._on_pass_failed(error)

        checkpoint = context.progress.current
        retriever = context.events.retriever(
            after_guid=checkpoint.last_event_id,
            resource_guids=context.resource_guids(),
        )
        retriever.for_each_event(self._process_event)
        retriever.for_each_skipped(self._skip_event)
        retriever.when_succeeded(succeeded)
        retriever.when_failed(failed)

        with tracer.start_as_current_span("usage_bridge.pass") as span:
            span.set_attribute("usage_bridge.after_guid", checkpoint.last_event_id or "")
            await retriever.start()
            span.set_attribute("usage_bridge.succeeded", outcome.get("succeeded", False))

        self._last_pass_succeeded = outcome.get("succeeded", False)
        self._state = (
            BridgeState.SUCCEEDED if self._last_pass_succeeded else BridgeState.FAILED
        )
        return self._last_pass_succeeded

    async def _process_event(self, event: UsageEvent) -> None:
        context = self._context
        try:
            usage = await context.builder.build(event)
            if usage is not None:
                result = await context.reporter.report(
                    usage, self._collector_token(), event.id
                )
        except BridgeError:
            context.statistics.record_event(EventOutcome.FAILED)
            raise

        if usage is None:
            context.statistics.record_event(EventOutcome.SKIPPED)
            await context.progress.write(Checkpoint.of(event))
            return

        if not result.is_delivered:
            context.statistics.record_event(EventOutcome.FAILED)
            raise UsageReportError(
                f"Usage of event {event.id} not reported: {result.error_message}",
                status_code=result.status_code,
            )

        if result.outcome == ReportOutcome.CREATED:
            context.statistics.record_event(EventOutcome.SUCCESS)
        else:
            context.statistics.record_event(EventOutcome.CONFLICT)
        context.errors.register_success()
        await context.progress.write(Checkpoint.of(event))

    async def _skip_event(self, event: UsageEvent) -> None:
        await self._context.progress.write(Checkpoint.of(event))

    def _collector_token(self) -> str | None:
        source = self._context.collector_token
        if source is None:
            return None
        try:
            return source.current()
        except TokenAcquisitionError:
            self._context.statistics.usage.missing_token += 1
            self._context.errors.missing_token = True
            raise

    def _on_token_failure(self, error: TokenAcquisitionError) -> None:
        self._context.errors.missing_token = True
        self._context.errors.register_error("Failed to acquire token", error)

    async def _on_pass_succeeded(self) -> None:
        context = self._context
        context.statistics.passes.succeeded += 1
        context.errors.missing_token = False
        logger.debug("Pass succeeded at %s", context.progress.current.last_event_id)
        try:
            await context.carry_over.purge()
        except StoreError as e:
            logger.warning("Failed to purge carry-over entries: %s", e)

    async def _on_pass_failed(self, error: BridgeError) -> None:
        context = self._context
        context.statistics.passes.failed += 1
        if isinstance(error, TokenAcquisitionError):
            context.errors.missing_token = True
        context.errors.register_error("Error processing usage events", error)

        if isinstance(error, CursorInvalidError):
            context.statistics.passes.cursor_resets += 1
            logger.warning("Event %s is gone, restarting from the beginning", error.cursor)
            try:
                await context.progress.clear()
            except StoreError as e:
                context.errors.register_error("Failed to clear checkpoint", e)
        elif (
            isinstance(error, StoreWriteConflictError)
            and error.document_id == context.progress.document_id
        ):
            logger.warning("Checkpoint changed by another writer, reloading it")
            try:
                await context.progress.read()
            except StoreError as e:
                context.errors.register_error("Failed to reload checkpoint", e)

    def get_status(self) -> dict:
        """Get scheduler status."""
        return {
            "state": self._state.value,
            "running": self.is_running,
            "pass_count": self._pass_count,
            "last_pass_at": self._last_pass_at.isoformat() if self._last_pass_at else None,
            "last_pass_succeeded": self._last_pass_succeeded,
            "next_delay_ms": self._next_delay_ms,
            "delay_attempts": self._context.delay.attempts,
        }
