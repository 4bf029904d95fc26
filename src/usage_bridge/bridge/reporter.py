"""Submission of usage documents to the collector."""

import logging

import httpx

from usage_bridge.bridge.carryover import CarryOver
from usage_bridge.bridge.models import ReportOutcome, ReportResult, UsageDocument
from usage_bridge.bridge.statistics import UsageStatistics
from usage_bridge.telemetry import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

COLLECTOR_USAGE_PATH = "/v1/metering/collected/usage"


class UsageReporter:
    """Posts usage documents to the collector and classifies the answer.

    The reporter never retries. A 201 commits the carry-over entry of the
    document; a 409 means the collector already holds it, which counts as
    delivered. Any other answer, transport failures included, is an error
    and leaves the event to be retried by the next pass.
    """

    def __init__(
        self,
        collector_url: str,
        carry_over: CarryOver,
        statistics: UsageStatistics | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the reporter.

        Args:
            collector_url: Collector base URL.
            carry_over: Ledger committed on created usage.
            statistics: Report counters.
            http_client: Optional HTTP client for testing.
            timeout: Request timeout in seconds.
        """
        self._endpoint = f"{collector_url.rstrip('/')}{COLLECTOR_USAGE_PATH}"
        self._carry_over = carry_over
        self._statistics = statistics or UsageStatistics()
        self._http_client = http_client
        self._timeout = timeout

    async def _post(self, payload: dict, headers: dict[str, str]) -> httpx.Response:
        if self._http_client:
            return await self._http_client.post(self._endpoint, json=payload, headers=headers)
        async with httpx.AsyncClient() as client:
            return await client.post(
                self._endpoint, json=payload, headers=headers, timeout=self._timeout
            )

    async def report(
        self, usage: UsageDocument, token: str | None, event_id: str
    ) -> ReportResult:
        """Report one usage document.

        Args:
            usage: Usage document to submit.
            token: Collector bearer token, or None when unsecured.
            event_id: GUID of the event the usage was built from.

        Returns:
            ReportResult classifying the collector answer.

        Raises:
            StoreError: If the carry-over entry of created usage cannot be written.
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        with tracer.start_as_current_span("usage_bridge.report") as span:
            span.set_attribute("usage_bridge.event_id", event_id)
            span.set_attribute("usage_bridge.consumer_id", usage.consumer_id)

            try:
                response = await self._post(usage.model_dump(mode="json"), headers)
            except httpx.HTTPError as e:
                self._statistics.report_failures += 1
                logger.error("Failed to report usage of event %s: %s", event_id, e)
                span.set_attribute("usage_bridge.outcome", ReportOutcome.ERROR.value)
                return ReportResult(outcome=ReportOutcome.ERROR, error_message=str(e))

            span.set_attribute("http.status_code", response.status_code)
            result = self._classify(response, event_id)
            span.set_attribute("usage_bridge.outcome", result.outcome.value)

        if result.outcome == ReportOutcome.CREATED:
            await self._carry_over.commit(usage, event_id)
        return result

    def _classify(self, response: httpx.Response, event_id: str) -> ReportResult:
        status = response.status_code
        if status == 201:
            self._statistics.report_success += 1
            logger.debug("Reported usage of event %s", event_id)
            return ReportResult(
                outcome=ReportOutcome.CREATED,
                status_code=status,
                location=response.headers.get("location"),
            )

        if status == 409:
            self._statistics.report_conflict += 1
            logger.warning("Usage of event %s was already reported", event_id)
            return ReportResult(outcome=ReportOutcome.CONFLICT, status_code=status)

        if 400 <= status < 500:
            self._statistics.report_business_error += 1
        else:
            self._statistics.report_failures += 1
        logger.error(
            "Collector rejected usage of event %s with status %d: %s",
            event_id,
            status,
            response.text,
        )
        return ReportResult(
            outcome=ReportOutcome.ERROR,
            status_code=status,
            error_message=f"Collector responded with status {status}",
        )
