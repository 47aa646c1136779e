"""Tests for the retrying HTTP executor."""
import json
import threading
import time
from dataclasses import replace

import pytest
from google.api_core import exceptions as api_exceptions
from werkzeug import Response

from gsm_toolkit.secrets.domains.config_loader import ClientConfig
from gsm_toolkit.secrets.domains.context import CallContext
from gsm_toolkit.secrets.domains.errors import (
    AuthFailure,
    Cancelled,
    ClientError,
    DeadlineExceeded,
    MAX_MESSAGE_BODY,
    NotFound,
    PermissionDenied,
    TransientFailure,
)
from gsm_toolkit.secrets.domains.executor import RetryingExecutor
from gsm_toolkit.secrets.domains.models import HttpRequest, Retryable, Success, Terminal

from conftest import Sequence


def _raw(status, body):
    return body


@pytest.fixture
def executor(client_config):
    ex = RetryingExecutor(client_config)
    yield ex
    ex.close()


class ScriptedAttempt:
    """Attempt callable returning pre-baked outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        return outcome


class TestRetryDriver:
    """The generic retry loop, independent of HTTP."""

    def test_success_on_first_attempt(self, executor):
        attempt = ScriptedAttempt(Success("value"))
        assert executor.run(CallContext.background(), attempt, "do thing") == "value"
        assert attempt.calls == 1

    def test_retryable_then_success(self, executor):
        attempt = ScriptedAttempt(
            Retryable(TransientFailure("status 503")),
            Retryable(TransientFailure("status 503")),
            Success("value"),
        )
        assert executor.run(CallContext.background(), attempt, "do thing") == "value"
        assert attempt.calls == 3

    def test_terminal_stops_immediately(self, executor):
        cause = NotFound("failed to do thing: status 404", status_code=404)
        attempt = ScriptedAttempt(Terminal(cause), Success("never"))
        with pytest.raises(NotFound) as exc_info:
            executor.run(CallContext.background(), attempt, "do thing")
        assert exc_info.value is cause
        assert attempt.calls == 1

    def test_exhaustion_wraps_last_cause(self, executor):
        last = TransientFailure("status 502")
        attempt = ScriptedAttempt(
            Retryable(TransientFailure("status 500")),
            Retryable(TransientFailure("status 503")),
            Retryable(last),
        )
        with pytest.raises(TransientFailure) as exc_info:
            executor.run(CallContext.background(), attempt, "do thing")
        assert str(exc_info.value) == "failed to do thing: status 502"
        assert exc_info.value.__cause__ is last
        assert attempt.calls == 3

    def test_exhaustion_uses_given_error_class(self, executor):
        attempt = ScriptedAttempt(Retryable(TransientFailure("empty access token")))
        with pytest.raises(AuthFailure) as exc_info:
            executor.run(CallContext.background(), attempt, "get access token",
                         exhausted_error=AuthFailure)
        assert "failed to get access token: empty access token" in str(exc_info.value)

    def test_never_exceeds_max_attempts(self, client_config):
        ex = RetryingExecutor(replace(client_config, max_attempts=5))
        attempt = ScriptedAttempt(Retryable(TransientFailure("status 500")))
        with pytest.raises(TransientFailure):
            ex.run(CallContext.background(), attempt, "do thing")
        assert attempt.calls == 5

    def test_cancelled_context_sends_nothing(self, executor):
        ctx = CallContext.background()
        ctx.cancel()
        attempt = ScriptedAttempt(Success("value"))
        with pytest.raises(Cancelled):
            executor.run(ctx, attempt, "do thing")
        assert attempt.calls == 0

    def test_deadline_during_retry_wait_reports_cancellation(self, client_config):
        ex = RetryingExecutor(replace(client_config, retry_delay=5))
        ctx = CallContext.with_timeout(0.1)
        attempt = ScriptedAttempt(Retryable(TransientFailure("status 503")))

        start = time.monotonic()
        with pytest.raises(Cancelled) as exc_info:
            ex.run(ctx, attempt, "do thing")
        assert time.monotonic() - start < 2
        assert not isinstance(exc_info.value, TransientFailure)
        assert attempt.calls == 1

    def test_result_arriving_after_cancel_is_discarded(self, executor):
        ctx = CallContext.background()

        def attempt():
            ctx.cancel()
            return Success("stale")

        with pytest.raises(Cancelled) as exc_info:
            executor.run(ctx, attempt, "do thing")
        assert str(exc_info.value) == "context canceled"

    def test_cancellation_wins_over_terminal_error(self, executor):
        ctx = CallContext.background()

        def attempt():
            ctx.cancel()
            return Terminal(NotFound("failed to do thing: status 404", status_code=404))

        with pytest.raises(Cancelled) as exc_info:
            executor.run(ctx, attempt, "do thing")
        assert not isinstance(exc_info.value, NotFound)


class TestHttpAttempt:
    """A single request against the local server."""

    def test_success_decodes_body(self, executor, httpserver):
        httpserver.expect_request("/v1/thing").respond_with_data("hello")
        request = HttpRequest("GET", httpserver.url_for("/v1/thing"), decode=_raw)
        assert executor.call(CallContext.background(), request, "get thing") == b"hello"

    def test_headers_and_body_are_sent(self, executor, httpserver):
        handler = Sequence(Response("ok"))
        httpserver.expect_request("/v1/thing", method="POST").respond_with_handler(handler)
        request = HttpRequest(
            "POST",
            httpserver.url_for("/v1/thing"),
            decode=_raw,
            headers={"Authorization": "Bearer abc", "Content-Type": "application/json"},
            body=b'{"a":1}',
        )
        executor.call(CallContext.background(), request, "post thing")

        sent = handler.requests[0]
        assert sent.headers["Authorization"] == "Bearer abc"
        assert sent.headers["Content-Type"] == "application/json"
        assert sent.get_data() == b'{"a":1}'

    @pytest.mark.parametrize("status,error_class,api_class", [
        (400, ClientError, api_exceptions.BadRequest),
        (401, PermissionDenied, api_exceptions.Unauthorized),
        (403, PermissionDenied, api_exceptions.Forbidden),
        (404, NotFound, api_exceptions.NotFound),
        (429, ClientError, api_exceptions.TooManyRequests),
    ])
    def test_4xx_is_terminal(self, executor, httpserver, status, error_class, api_class):
        handler = Sequence(Response("denied", status=status))
        httpserver.expect_request("/v1/thing").respond_with_handler(handler)
        request = HttpRequest("GET", httpserver.url_for("/v1/thing"), decode=_raw)

        with pytest.raises(error_class) as exc_info:
            executor.call(CallContext.background(), request, "get thing")

        error = exc_info.value
        assert handler.calls == 1
        assert error.status_code == status
        assert error.body == "denied"
        assert isinstance(error.api_error, api_class)
        assert str(error) == f"failed to get thing: status {status}: denied"

    def test_5xx_is_retried_with_status_in_error(self, executor, httpserver):
        handler = Sequence(Response("backend down", status=503))
        httpserver.expect_request("/v1/thing").respond_with_handler(handler)
        request = HttpRequest("GET", httpserver.url_for("/v1/thing"), decode=_raw)

        with pytest.raises(TransientFailure) as exc_info:
            executor.call(CallContext.background(), request, "get thing")
        assert handler.calls == 3
        assert str(exc_info.value) == "failed to get thing: status 503: backend down"

    def test_decode_error_is_retried(self, executor, httpserver):
        handler = Sequence(Response("not json"), Response('{"ok": true}'))
        httpserver.expect_request("/v1/thing").respond_with_handler(handler)

        request = HttpRequest("GET", httpserver.url_for("/v1/thing"),
                              decode=lambda status, body: json.loads(body))
        assert executor.call(CallContext.background(), request, "get thing") == {"ok": True}
        assert handler.calls == 2

    def test_extra_ok_status_is_decoded(self, executor, httpserver):
        httpserver.expect_request("/v1/thing").respond_with_data("exists", status=409)
        request = HttpRequest(
            "POST", httpserver.url_for("/v1/thing"),
            decode=lambda status, body: status,
            ok_statuses=frozenset({200, 201, 409}),
        )
        assert executor.call(CallContext.background(), request, "create thing") == 409

    def test_body_is_capped(self, client_config, httpserver):
        ex = RetryingExecutor(replace(client_config, max_body_size=16))
        httpserver.expect_request("/v1/big").respond_with_data("x" * 1000)
        request = HttpRequest("GET", httpserver.url_for("/v1/big"), decode=_raw)
        try:
            assert ex.call(CallContext.background(), request, "get big") == b"x" * 16
        finally:
            ex.close()

    def test_body_at_cap_is_untouched(self, client_config, httpserver):
        ex = RetryingExecutor(replace(client_config, max_body_size=16))
        httpserver.expect_request("/v1/exact").respond_with_data("y" * 16)
        request = HttpRequest("GET", httpserver.url_for("/v1/exact"), decode=_raw)
        try:
            assert ex.call(CallContext.background(), request, "get exact") == b"y" * 16
        finally:
            ex.close()

    def test_connection_error_is_retried(self):
        config = ClientConfig(metadata_url="http://127.0.0.1:1", api_url="http://127.0.0.1:1",
                              retry_delay=0.01)
        ex = RetryingExecutor(config)
        request = HttpRequest("GET", "http://127.0.0.1:1/v1/thing", decode=_raw)
        try:
            with pytest.raises(TransientFailure) as exc_info:
                ex.call(CallContext.background(), request, "get thing")
        finally:
            ex.close()
        assert "failed to get thing: ConnectionError" in str(exc_info.value)

    def test_4xx_message_quotes_a_bounded_slice_of_body(self, executor, httpserver):
        body = "e" * (MAX_MESSAGE_BODY * 4)
        httpserver.expect_request("/v1/thing").respond_with_data(body, status=400)
        request = HttpRequest("GET", httpserver.url_for("/v1/thing"), decode=_raw)

        with pytest.raises(ClientError) as exc_info:
            executor.call(CallContext.background(), request, "get thing")

        error = exc_info.value
        assert str(error) == f"failed to get thing: status 400: {'e' * MAX_MESSAGE_BODY}..."
        assert error.body == body

    def test_5xx_message_quotes_a_bounded_slice_of_body(self, executor, httpserver):
        httpserver.expect_request("/v1/thing").respond_with_data("f" * 5000, status=500)
        request = HttpRequest("GET", httpserver.url_for("/v1/thing"), decode=_raw)

        with pytest.raises(TransientFailure) as exc_info:
            executor.call(CallContext.background(), request, "get thing")
        assert str(exc_info.value).endswith(f"status 500: {'f' * MAX_MESSAGE_BODY}...")


class TestInFlightCancellation:
    """The context finishes while a request is on the wire."""

    def test_deadline_while_body_trickles_in(self, executor, httpserver):
        calls = []

        def trickle(request):
            calls.append(request)

            def body():
                for _ in range(10):
                    time.sleep(0.2)
                    yield b"x"
            return Response(body(), content_type="application/octet-stream")

        httpserver.expect_request("/v1/slow").respond_with_handler(trickle)
        request = HttpRequest("GET", httpserver.url_for("/v1/slow"), decode=_raw)

        with pytest.raises(DeadlineExceeded):
            executor.call(CallContext.with_timeout(0.5), request, "get slow")
        assert len(calls) == 1

    def test_cancel_while_waiting_for_response(self, executor, httpserver):
        calls = []

        def delayed(request):
            calls.append(request)
            time.sleep(1.0)
            return Response("late-value")

        httpserver.expect_request("/v1/slow").respond_with_handler(delayed)
        request = HttpRequest("GET", httpserver.url_for("/v1/slow"), decode=_raw)
        ctx = CallContext.background()
        timer = threading.Timer(0.2, ctx.cancel)
        timer.start()
        try:
            with pytest.raises(Cancelled) as exc_info:
                executor.call(ctx, request, "get slow")
        finally:
            timer.cancel()

        assert not isinstance(exc_info.value, DeadlineExceeded)
        assert str(exc_info.value) == "context canceled"
        assert len(calls) == 1


class TestSessionPool:

    def test_adapter_uses_configured_pool_sizes(self):
        ex = RetryingExecutor(ClientConfig(max_idle_conns=7, max_idle_conns_per_host=3))
        adapter = ex.session.get_adapter("https://secretmanager.googleapis.com/v1")
        assert adapter._pool_connections == 7
        assert adapter._pool_maxsize == 3
        ex.close()

    def test_session_is_reused(self):
        ex = RetryingExecutor(ClientConfig())
        assert ex.session is ex.session
        ex.close()

    def test_concurrent_first_use_builds_one_session(self):
        ex = RetryingExecutor(ClientConfig())
        barrier = threading.Barrier(8)
        sessions = []

        def grab():
            barrier.wait()
            sessions.append(ex.session)

        threads = [threading.Thread(target=grab) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(sessions) == 8
        assert all(s is sessions[0] for s in sessions)
        ex.close()
