"""HTTP endpoint validation for deployed services.

Each probe passes when the observed status code is a member of its
acceptable set. Request-level failures (network errors, timeouts) are
recorded as failed results and never propagate to the caller.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

import httpx

from deckwatch.config.defaults import DEFAULT_PROBE_TIMEOUT
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.endpoint import EndpointProbe, EndpointTest, ValidationReport
from deckwatch.models.log_entry import Severity

logger = get_logger(__name__)

ProbeReporter = Callable[[Severity, str], None]


def join_url(base_url: str, path: str) -> str:
    """Join a base address and a probe path without doubling slashes."""
    return f"{base_url.rstrip('/')}{path}"


class EndpointValidator:
    """Issues declared probes against a base address, one at a time."""

    def __init__(
        self,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the validator.

        Args:
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self._transport = transport

    async def validate(
        self,
        base_url: str,
        probes: Sequence[EndpointProbe],
        report: ProbeReporter | None = None,
    ) -> list[EndpointTest]:
        """Run every probe and return the results in declaration order.

        Args:
            base_url: Address the probe paths are appended to
            probes: Declared probes
            report: Optional callback receiving a line per probe outcome

        Returns:
            One EndpointTest per probe
        """
        results: list[EndpointTest] = []
        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            for probe in probes:
                if report:
                    report(Severity.INFO, f"Testing {probe.method} {probe.path}")
                result = await self._probe(client, base_url, probe)
                results.append(result)
                if report:
                    report(*self._describe(result))
        return results

    async def run(
        self,
        base_url: str,
        probes: Sequence[EndpointProbe],
        deployment_id: str | None = None,
        report: ProbeReporter | None = None,
    ) -> ValidationReport:
        """Validate and wrap the results in a ValidationReport."""
        started_at = datetime.now(timezone.utc)
        results = await self.validate(base_url, probes, report=report)
        return ValidationReport(
            base_url=base_url,
            results=results,
            passed=sum(1 for r in results if r.success),
            total=len(results),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            deployment_id=deployment_id,
        )

    async def _probe(
        self, client: httpx.AsyncClient, base_url: str, probe: EndpointProbe
    ) -> EndpointTest:
        url = join_url(base_url, probe.path)
        # POST probes carry an empty JSON body so handlers reach validation
        body = {} if probe.method in ("POST", "PUT", "PATCH") else None
        start = time.perf_counter()
        try:
            response = await client.request(probe.method, url, json=body)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            latency_ms = (time.perf_counter() - start) * 1000
            error = str(exc) or type(exc).__name__
            logger.debug(f"Probe {probe.method} {url} failed: {error}")
            return EndpointTest(
                method=probe.method,
                path=probe.path,
                description=probe.description,
                expect_status=list(probe.expect_status),
                latency_ms=round(latency_ms, 2),
                success=False,
                error=error,
            )

        latency_ms = (time.perf_counter() - start) * 1000
        return EndpointTest(
            method=probe.method,
            path=probe.path,
            description=probe.description,
            expect_status=list(probe.expect_status),
            status_code=response.status_code,
            latency_ms=round(latency_ms, 2),
            success=response.status_code in probe.expect_status,
        )

    @staticmethod
    def _describe(result: EndpointTest) -> tuple[Severity, str]:
        label = f"{result.method} {result.path}"
        latency = f"({result.latency_ms:.0f}ms)"
        if result.error is not None:
            return Severity.ERROR, f"✗ {label} - {result.error}"
        if result.success:
            return Severity.SUCCESS, f"✓ {label} - {result.status_code} {latency}"
        expected = " or ".join(str(s) for s in result.expect_status)
        return (
            Severity.ERROR,
            f"✗ {label} - {result.status_code} (expected: {expected}) {latency}",
        )
