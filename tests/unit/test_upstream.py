"""Unit tests for the upstream layer.

Covers:
- :class:`~apatit.upstream.rate_limiter.RateLimiter` sliding-window admission
  with an injected clock and sleep (no real waiting).
- :class:`~apatit.upstream.http_client.UpstreamHttpClient` query building,
  jitter, tenacity-driven retries, retry exhaustion, JSON decode failures and
  API key masking.
- :class:`~apatit.upstream.client.PingAdminClient` request parameters,
  payload validation and mapping into the processed models.
- :func:`~apatit.upstream.normalizers.parse_or_zero` numeric decode policy.

All network I/O is replaced by :class:`~unittest.mock.AsyncMock` /
:class:`~unittest.mock.MagicMock`, so the suite is deterministic and
network-free.
"""

from __future__ import annotations

import json as _json
import logging
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from apatit.core.exceptions import (
    DecodeError,
    NoDataError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from apatit.upstream.client import PingAdminClient
from apatit.upstream.http_client import UpstreamHttpClient, randomized_pause
from apatit.upstream.normalizers import parse_or_zero
from apatit.upstream.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_API_KEY = "s3cr3t-key"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class _FakeClock:
    """Monotonic clock that only moves when :meth:`sleep` is awaited."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _mock_httpx_response(
    *,
    status_code: int = 200,
    json_data: Any = None,
    text: str | None = None,
) -> MagicMock:
    """Create a minimal mock of an :class:`httpx.Response`."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    _text = text if text is not None else (_json.dumps(json_data) if json_data is not None else "")
    resp.text = _text
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    resp.content = _text.encode()
    elapsed = MagicMock()
    elapsed.total_seconds.return_value = 0.05
    resp.elapsed = elapsed
    return resp


def _inject_mock_underlying(client: UpstreamHttpClient, mock_http: MagicMock) -> None:
    """Replace the internal :class:`httpx.AsyncClient` of *client* with *mock_http*.

    The mock must report ``is_closed = False`` so that ``_ensure_client`` does
    not try to recreate it, and must provide an async-compatible ``aclose`` so
    the lifecycle teardown succeeds.
    """
    mock_http.is_closed = False
    mock_http.aclose = AsyncMock()
    client._http = mock_http  # noqa: SLF001


def _mock_transport(*responses: Any) -> MagicMock:
    mock_http = MagicMock()
    if len(responses) == 1 and not isinstance(responses[0], BaseException):
        mock_http.request = AsyncMock(return_value=responses[0])
    else:
        mock_http.request = AsyncMock(side_effect=list(responses))
    return mock_http


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


class TestRateLimiter:
    async def test_two_calls_admitted_immediately(self) -> None:
        clock = _FakeClock()
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        await limiter.acquire()

        assert clock.sleeps == []

    async def test_third_call_waits_for_safety_margin(self) -> None:
        """Two calls in the window → the third waits until the oldest is 1.1 s old."""
        clock = _FakeClock()
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)
        admitted: list[float] = []

        for _ in range(3):
            await limiter.acquire()
            admitted.append(clock.now)

        assert clock.sleeps == [pytest.approx(1.1)]
        assert admitted[2] - admitted[1] >= 1.1 - 1e-9

    async def test_wait_accounts_for_elapsed_time(self) -> None:
        clock = _FakeClock()
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        clock.now = 0.4
        await limiter.acquire()
        clock.now = 0.6
        await limiter.acquire()

        assert clock.sleeps == [pytest.approx(0.5)]

    async def test_window_rolls_without_waiting(self) -> None:
        clock = _FakeClock()
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        clock.now = 0.5
        await limiter.acquire()
        clock.now = 1.05
        await limiter.acquire()

        assert clock.sleeps == []

    async def test_never_more_than_budget_per_second(self) -> None:
        clock = _FakeClock()
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)
        admitted: list[float] = []

        for _ in range(10):
            await limiter.acquire()
            admitted.append(clock.now)

        for i in range(len(admitted) - 2):
            assert admitted[i + 2] - admitted[i] >= 1.0

    @pytest.mark.parametrize("value", [0, -3])
    def test_non_positive_budget_falls_back_to_two(self, value: int) -> None:
        assert RateLimiter(value).max_per_second == 2


# ---------------------------------------------------------------------------
# HTTP transport
# ---------------------------------------------------------------------------


class TestRandomizedPause:
    def test_within_bounds(self) -> None:
        for _ in range(200):
            assert 2.0 <= randomized_pause(2.0) <= 4.0

    def test_zero_disables(self) -> None:
        assert randomized_pause(0.0) == 0.0
        assert randomized_pause(-1.0) == 0.0


class TestUpstreamHttpClient:
    """Retries, decode failures and masking, with every sleep mocked out."""

    @pytest.fixture()
    def sleep(self) -> AsyncMock:
        return AsyncMock(return_value=None)

    @pytest.fixture()
    async def http3(self, sleep: AsyncMock) -> AsyncGenerator[UpstreamHttpClient, None]:
        """Open a client with 3 attempts and an unlimited-enough rate limiter."""
        async with UpstreamHttpClient(
            api_key=_API_KEY,
            rate_limiter=RateLimiter(100),
            request_delay=2.0,
            max_attempts=3,
            sleep=sleep,
        ) as client:
            yield client

    async def test_query_carries_action_and_api_key(self, http3: UpstreamHttpClient) -> None:
        mock_http = _mock_transport(_mock_httpx_response(json_data=[]))
        _inject_mock_underlying(http3, mock_http)

        assert await http3.get_json("task_stat", {"id": 123, "limit": 100}) == []

        mock_http.request.assert_awaited_once_with(
            "GET",
            "/",
            params={
                "a": "api",
                "sa": "task_stat",
                "enc": "utf8",
                "api_key": _API_KEY,
                "id": 123,
                "limit": 100,
            },
        )

    async def test_delayed_request_pauses_within_jitter_bounds(
        self, http3: UpstreamHttpClient, sleep: AsyncMock
    ) -> None:
        _inject_mock_underlying(http3, _mock_transport(_mock_httpx_response(json_data=[])))

        await http3.get_json("tm", delayed=True)

        sleep.assert_awaited_once()
        assert 2.0 <= sleep.await_args.args[0] <= 4.0

    async def test_undelayed_request_does_not_pause(
        self, http3: UpstreamHttpClient, sleep: AsyncMock
    ) -> None:
        _inject_mock_underlying(http3, _mock_transport(_mock_httpx_response(json_data=[])))

        await http3.get_json("task_graph_stat", {"id": 1})

        sleep.assert_not_awaited()

    async def test_three_transport_failures_give_up(
        self, http3: UpstreamHttpClient, sleep: AsyncMock
    ) -> None:
        """Exactly 3 attempts, 2 randomised pauses, then UpstreamUnavailableError."""
        mock_http = MagicMock()
        mock_http.request = AsyncMock(side_effect=httpx.ConnectTimeout("always times out"))
        _inject_mock_underlying(http3, mock_http)

        with pytest.raises(UpstreamUnavailableError) as excinfo:
            await http3.get_json("task_stat", operation="get_task_stat")

        assert mock_http.request.call_count == 3
        assert excinfo.value.attempts == 3
        assert excinfo.value.operation == "get_task_stat"
        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert 2.0 <= call.args[0] <= 4.0

    async def test_failure_then_success_returns_payload(self, http3: UpstreamHttpClient) -> None:
        mock_http = _mock_transport(
            httpx.ReadTimeout("first attempt timed out"),
            _mock_httpx_response(json_data=[{"id": "7"}]),
        )
        _inject_mock_underlying(http3, mock_http)

        assert await http3.get_json("tm") == [{"id": "7"}]
        assert mock_http.request.call_count == 2

    async def test_non_success_status_is_retried(self, http3: UpstreamHttpClient) -> None:
        mock_http = _mock_transport(
            _mock_httpx_response(status_code=503, text="Server Unavailable"),
            _mock_httpx_response(status_code=500, text="oops"),
            _mock_httpx_response(json_data=[]),
        )
        _inject_mock_underlying(http3, mock_http)

        assert await http3.get_json("tasks") == []
        assert mock_http.request.call_count == 3

    async def test_persistent_bad_status_wraps_last_status_error(
        self, http3: UpstreamHttpClient
    ) -> None:
        mock_http = MagicMock()
        mock_http.request = AsyncMock(
            return_value=_mock_httpx_response(status_code=502, text="Bad Gateway")
        )
        _inject_mock_underlying(http3, mock_http)

        with pytest.raises(UpstreamUnavailableError) as excinfo:
            await http3.get_json("tm")

        assert isinstance(excinfo.value.last_error, UpstreamStatusError)
        assert excinfo.value.last_error.status_code == 502

    async def test_invalid_json_is_not_retried(self, http3: UpstreamHttpClient) -> None:
        mock_http = _mock_transport(_mock_httpx_response(text="<html>maintenance</html>"))
        _inject_mock_underlying(http3, mock_http)

        with pytest.raises(DecodeError, match="failed to decode JSON"):
            await http3.get_json("tm", operation="get_mps")

        assert mock_http.request.call_count == 1

    async def test_api_key_masked_in_errors(self, http3: UpstreamHttpClient) -> None:
        mock_http = MagicMock()
        mock_http.request = AsyncMock(
            side_effect=httpx.ConnectError(
                f"failed to reach https://ping-admin.com/?a=api&api_key={_API_KEY}&sa=tm"
            )
        )
        _inject_mock_underlying(http3, mock_http)

        with pytest.raises(UpstreamUnavailableError) as excinfo:
            await http3.get_json("tm")

        assert _API_KEY not in str(excinfo.value)
        assert "api_key=***" in str(excinfo.value)

    async def test_every_attempt_acquires_rate_limiter(self, sleep: AsyncMock) -> None:
        limiter = MagicMock(spec=RateLimiter)
        limiter.acquire = AsyncMock()
        async with UpstreamHttpClient(
            api_key=_API_KEY, rate_limiter=limiter, max_attempts=2, sleep=sleep
        ) as client:
            _inject_mock_underlying(
                client,
                _mock_transport(httpx.ConnectError("refused"), _mock_httpx_response(json_data=[])),
            )
            await client.get_json("tm")

        assert limiter.acquire.await_count == 2

    def test_max_attempts_below_one_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            UpstreamHttpClient(api_key=_API_KEY, max_attempts=0)

    async def test_close_is_idempotent(self) -> None:
        client = UpstreamHttpClient(api_key=_API_KEY)
        await client.close()
        async with client:
            pass
        await client.close()


# ---------------------------------------------------------------------------
# Typed client
# ---------------------------------------------------------------------------


def _client_returning(payload: Any) -> tuple[PingAdminClient, MagicMock]:
    http = MagicMock(spec=UpstreamHttpClient)
    http.get_json = AsyncMock(return_value=payload)
    return PingAdminClient(http), http


class TestPingAdminClient:
    async def test_graph_stat_request_and_mapping(self) -> None:
        client, http = _client_returning(
            [
                {
                    "tm_id": "7",
                    "tm_name": "Москва",
                    "tm_res": [
                        {
                            "connect": "0.1",
                            "dns": "0.02",
                            "server": "0.3",
                            "total": "0.45",
                            "speed": "123456",
                            "tmstamp": "1718000000",
                        }
                    ],
                }
            ]
        )

        entries = await client.get_task_graph_stat(123)

        http.get_json.assert_awaited_once_with(
            "task_graph_stat",
            {"id": 123, "notnull": 1, "limit": 1},
            operation="get_task_graph_stat",
        )
        assert len(entries) == 1
        entry = entries[0]
        assert entry.id == "7"
        assert entry.name == "Москва"
        assert entry.status == 0
        sample = entry.results[0]
        assert sample.connect == pytest.approx(0.1)
        assert sample.dns == pytest.approx(0.02)
        assert sample.server == pytest.approx(0.3)
        assert sample.total == pytest.approx(0.45)
        assert sample.speed == 123456
        assert sample.timestamp == 1718000000

    async def test_unparsable_number_becomes_zero(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        client, _ = _client_returning(
            [{"tm_id": "7", "tm_name": "x", "tm_res": [{"connect": "n/a", "tmstamp": "1"}]}]
        )

        with caplog.at_level(logging.WARNING, logger="apatit.upstream.normalizers"):
            entries = await client.get_task_graph_stat(1)

        assert entries[0].results[0].connect == 0.0
        assert entries[0].results[0].timestamp == 1
        assert any("connect" in r.getMessage() for r in caplog.records)

    async def test_empty_graph_stat_is_valid(self) -> None:
        client, _ = _client_returning([])
        assert await client.get_task_graph_stat(1) == []

    async def test_structural_mismatch_raises_decode_error(self) -> None:
        client, _ = _client_returning({"error": "bad api key"})
        with pytest.raises(DecodeError, match="get_task_graph_stat"):
            await client.get_task_graph_stat(1)

    async def test_missing_required_field_raises_decode_error(self) -> None:
        client, _ = _client_returning([{"tm_name": "no id"}])
        with pytest.raises(DecodeError, match="tm_id"):
            await client.get_task_graph_stat(1)

    async def test_monitoring_points_are_jittered(self) -> None:
        client, http = _client_returning(
            [{"id": "7", "name": "Москва", "ip": "10.0.0.7", "gps": "55.7,37.6", "status": "1"}]
        )

        points = await client.get_monitoring_points()

        http.get_json.assert_awaited_once_with("tm", operation="get_mps", delayed=True)
        assert points[0].id == "7"
        assert points[0].ip == "10.0.0.7"
        assert points[0].status == 1

    async def test_monitoring_points_without_jitter(self) -> None:
        client, http = _client_returning([])

        assert await client.get_monitoring_points(delayed=False) == []

        http.get_json.assert_awaited_once_with("tm", operation="get_mps", delayed=False)

    async def test_all_tasks_mapping(self) -> None:
        client, http = _client_returning(
            [
                {
                    "tid": "123",
                    "status": 1,
                    "nazv": "shop",
                    "name": "https://shop.example",
                    "log_status": 1,
                    "rk_log_status": 0,
                    "sb_log_status": 0,
                    "period": 3,
                }
            ]
        )

        tasks = await client.get_all_tasks()

        http.get_json.assert_awaited_once_with("tasks", operation="get_all_tasks", delayed=True)
        assert tasks[0].id == 123
        assert tasks[0].service_name == "shop"
        assert tasks[0].url == "https://shop.example"
        assert tasks[0].enabled_status == 1
        assert tasks[0].task_status == 1
        assert tasks[0].timestamp.tzinfo is not None

    async def test_task_stat_request_and_mapping(self) -> None:
        client, http = _client_returning(
            [
                {
                    "uptime": "99.9",
                    "tasks_logs": [
                        {
                            "data": "2026-01-01 00:00:00",
                            "descr": "Timeout",
                            "status": 0,
                            "tm": "Москва",
                            "tm_id": "7",
                            "traceroute": "hop1\\nhop2",
                        },
                        {"data": "2026-01-01 00:03:00"},
                    ],
                }
            ]
        )

        entry = await client.get_task_stat(123)

        http.get_json.assert_awaited_once_with(
            "task_stat", {"id": 123, "limit": 100}, operation="get_task_stat"
        )
        assert entry.task_id == ""
        assert len(entry.task_logs) == 2
        assert entry.task_logs[0].description == "Timeout"
        assert entry.task_logs[0].mp_name == "Москва"
        assert entry.task_logs[0].mp_id == "7"
        assert entry.task_logs[1].traceroute == ""
        assert entry.task_logs[1].status == 0

    async def test_empty_task_stat_raises_no_data(self) -> None:
        client, _ = _client_returning([])
        with pytest.raises(NoDataError, match="task 123"):
            await client.get_task_stat(123)

    async def test_context_manager_closes_transport(self) -> None:
        http = MagicMock(spec=UpstreamHttpClient)
        http.__aenter__ = AsyncMock(return_value=http)
        http.close = AsyncMock()
        async with PingAdminClient(http) as client:
            assert client.http is http
        http.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Numeric decode policy
# ---------------------------------------------------------------------------


class TestParseOrZero:
    @pytest.mark.parametrize(
        ("value", "kind", "expected"),
        [
            ("0.25", float, 0.25),
            ("1e-3", float, 0.001),
            (3, float, 3.0),
            (0.5, float, 0.5),
            ("42", int, 42),
            ("-7", int, -7),
            (9, int, 9),
            (7.0, int, 7),
            (None, float, 0.0),
            ("", int, 0),
        ],
    )
    def test_parses_without_warning(self, value: Any, kind: type, expected: float) -> None:
        parsed, warning = parse_or_zero(value, "field", kind)
        assert parsed == pytest.approx(expected)
        assert isinstance(parsed, kind)
        assert warning is None

    @pytest.mark.parametrize(
        ("value", "kind"),
        [
            ("abc", float),
            ("nan", float),
            ("inf", float),
            ("12.5", int),
            ("1_000", int),
            (" 5", int),
            (2.5, int),
        ],
    )
    def test_unparsable_yields_zero_and_warning(self, value: Any, kind: type) -> None:
        parsed, warning = parse_or_zero(value, "speed", kind)
        assert parsed == 0
        assert warning is not None
        assert "speed" in warning
