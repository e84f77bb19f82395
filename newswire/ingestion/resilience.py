"""Timeout, retry and alternate-transport fallback around one adapter call."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog
from tenacity import (
    AsyncRetrying, RetryCallState, retry_if_exception_type,
    stop_after_attempt, wait_exponential,
)

from .interfaces import (
    AdapterInterface, FailureKind, FetchError, FetchOutcome, FetchReport,
    RateLimitedError, SourceDescriptor, SourceProtocol, TransientFetchError,
)
from ..config.settings import Settings, settings as default_settings

logger = structlog.get_logger()


@dataclass
class _AttemptState:
    attempts: int = 0
    proxy_tried: bool = False
    used_proxy: bool = False


class ResilientFetcher:
    """Wraps adapters with a per-attempt timeout, exponential backoff and one proxy re-fetch.

    ``fetch`` never raises: on exhaustion it returns an empty report and passes
    the failure reason to ``on_fetch_complete``.
    """

    def __init__(
        self,
        adapters: Dict[SourceProtocol, AdapterInterface],
        config: Settings = None,
        on_fetch_complete: Callable = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.adapters = adapters
        self.config = config or default_settings
        self.on_fetch_complete = on_fetch_complete  # Callback for source stats
        self.sleep = sleep  # Backoff sleep between attempts

    async def fetch(self, descriptor: SourceDescriptor) -> FetchReport:
        start_time = time.monotonic()
        state = _AttemptState()
        report = FetchReport(source_id=descriptor.id)

        adapter = self.adapters.get(descriptor.protocol)
        if adapter is None:
            report.error = f"no adapter for protocol {descriptor.protocol.value}"
            logger.error("adapter_missing", source=descriptor.id, protocol=descriptor.protocol.value)
            return self._finish(report, state, start_time)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(0, descriptor.retries) + 1),
            wait=wait_exponential(
                multiplier=self.config.retry_backoff_base_seconds,
                exp_base=2,
                max=self.config.retry_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=self._log_retry(descriptor),
            sleep=self.sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    outcome = await self._attempt(adapter, descriptor, state)
            report.articles = outcome.articles
        except RateLimitedError as e:
            report.error = str(e)
            report.rate_limited = True
            logger.warning("feed_rate_limited", source=descriptor.id, error=str(e))
        except FetchError as e:
            report.error = str(e)
            logger.error(
                "feed_retries_exhausted",
                source=descriptor.id,
                attempts=state.attempts,
                error=str(e),
            )
        except Exception as e:
            report.error = f"unexpected error: {e!r}"
            logger.exception("feed_fetch_crashed", source=descriptor.id)

        return self._finish(report, state, start_time)

    async def _attempt(
        self,
        adapter: AdapterInterface,
        descriptor: SourceDescriptor,
        state: _AttemptState,
    ) -> FetchOutcome:
        state.attempts += 1
        outcome = await self._call(adapter.fetch, descriptor)
        if outcome.ok:
            return outcome

        failure = outcome.failure
        if failure.kind is FailureKind.RATE_LIMITED:
            raise RateLimitedError(str(failure))

        # Direct path refused outright: one re-fetch through the proxy.
        if failure.kind is FailureKind.UNREACHABLE and adapter.supports_proxy and not state.proxy_tried:
            state.proxy_tried = True
            proxied = await self._call(adapter.fetch_via_proxy, descriptor)
            if proxied.ok:
                state.used_proxy = True
                logger.info("proxy_fallback_used", source=descriptor.id, articles=len(proxied.articles))
                return proxied
            logger.warning("proxy_fallback_failed", source=descriptor.id, error=str(proxied.failure))

        raise TransientFetchError(str(failure), failure.kind)

    async def _call(self, method, descriptor: SourceDescriptor) -> FetchOutcome:
        timeout = self._timeout(descriptor)
        try:
            return await asyncio.wait_for(method(descriptor), timeout)
        except asyncio.TimeoutError:
            return FetchOutcome.failed(FailureKind.TRANSIENT, f"timed out after {timeout:.1f}s")

    def _timeout(self, descriptor: SourceDescriptor) -> float:
        if descriptor.timeout_ms and descriptor.timeout_ms > 0:
            return descriptor.timeout_ms / 1000.0
        return self.config.fetch_timeout_seconds

    @staticmethod
    def _log_retry(descriptor: SourceDescriptor):
        def before_sleep(retry_state: RetryCallState):
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.info(
                "feed_retry_scheduled",
                source=descriptor.id,
                attempt=retry_state.attempt_number,
                delay_s=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(exc) if exc else None,
            )
        return before_sleep

    def _finish(self, report: FetchReport, state: _AttemptState, start_time: float) -> FetchReport:
        report.attempts = state.attempts
        report.used_proxy = state.used_proxy
        report.elapsed_ms = int((time.monotonic() - start_time) * 1000)

        # Callback for stats
        if self.on_fetch_complete:
            try:
                self.on_fetch_complete(
                    source_id=report.source_id,
                    articles=len(report.articles),
                    error=report.error,
                    fetch_time_ms=report.elapsed_ms,
                )
            except Exception as e:
                logger.error("fetch_callback_failed", source=report.source_id, error=str(e))
        return report
