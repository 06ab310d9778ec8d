"""Unit tests for the HTTP endpoint validator."""

from __future__ import annotations

import httpx
import pytest

from deckwatch.deploy.validator import EndpointValidator, join_url
from deckwatch.lib.errors import EndpointValidationError
from deckwatch.models.endpoint import EndpointProbe
from deckwatch.models.log_entry import Severity


def _transport(routes: dict[tuple[str, str], int]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        status = routes.get((request.method, request.url.path), 404)
        return httpx.Response(status, json={"path": request.url.path})

    return httpx.MockTransport(handler)


PROBES = [
    EndpointProbe(path="/therapists", description="List"),
    EndpointProbe(path="/therapists/search", description="Search"),
    EndpointProbe(
        method="post", path="/auth/login", expect_status=[400, 401], description="Login"
    ),
]


@pytest.mark.unit
class TestJoinUrl:
    """Tests for join_url."""

    def test_strips_trailing_slash(self) -> None:
        """No doubled slashes between base and path."""
        assert join_url("https://api.test/prod/", "/x") == "https://api.test/prod/x"


@pytest.mark.unit
class TestEndpointValidator:
    """Tests for probe execution and result mapping."""

    @pytest.mark.asyncio
    async def test_all_probes_pass(self) -> None:
        """Acceptable statuses, including auth rejections, count as passes."""
        transport = _transport(
            {
                ("GET", "/therapists"): 200,
                ("GET", "/therapists/search"): 200,
                ("POST", "/auth/login"): 401,
            }
        )
        validator = EndpointValidator(transport=transport)

        report = await validator.run("http://x", PROBES)

        assert report.healthy
        assert report.passed == report.total == 3
        assert [r.status_code for r in report.results] == [200, 200, 401]
        assert report.failed == []

    @pytest.mark.asyncio
    async def test_unexpected_status_fails_probe(self) -> None:
        """A 404 against an expectation of [200] fails that probe only."""
        transport = _transport(
            {("GET", "/therapists"): 200, ("POST", "/auth/login"): 400}
        )
        validator = EndpointValidator(transport=transport)

        report = await validator.run("http://x", PROBES)

        assert not report.healthy
        search = report.results[1]
        assert search.status_code == 404
        assert search.success is False
        assert search.error is None
        assert report.passed == 2

    @pytest.mark.asyncio
    async def test_request_exception_becomes_failed_result(self) -> None:
        """Transport errors are recorded, never raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        validator = EndpointValidator(transport=httpx.MockTransport(handler))

        results = await validator.validate("http://x", PROBES[:1])

        assert len(results) == 1
        assert results[0].success is False
        assert results[0].status_code is None
        assert "connection refused" in results[0].error

    @pytest.mark.asyncio
    async def test_post_probes_send_json_body(self) -> None:
        """Write probes carry an empty JSON object."""
        seen: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.content)
            return httpx.Response(400)

        validator = EndpointValidator(transport=httpx.MockTransport(handler))

        await validator.validate("http://x", PROBES[2:])

        assert seen == [b"{}"]

    @pytest.mark.asyncio
    async def test_reporter_receives_outcome_lines(self) -> None:
        """The reporter gets a line per probe plus its outcome."""
        lines: list[tuple[Severity, str]] = []
        validator = EndpointValidator(transport=_transport({}))

        await validator.validate(
            "http://x", PROBES[:1], report=lambda s, m: lines.append((s, m))
        )

        assert lines[0] == (Severity.INFO, "Testing GET /therapists")
        assert lines[1][0] == Severity.ERROR
        assert "404 (expected: 200)" in lines[1][1]

    @pytest.mark.asyncio
    async def test_raise_for_health(self) -> None:
        """Unhealthy reports raise EndpointValidationError on request."""
        validator = EndpointValidator(transport=_transport({}))
        report = await validator.run("http://x", PROBES[:2])

        with pytest.raises(EndpointValidationError) as exc_info:
            report.raise_for_health()

        assert exc_info.value.code == "EndpointValidationFailure"
        assert len(exc_info.value.failed) == 2
        assert exc_info.value.total == 2
