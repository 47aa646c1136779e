"""Retrying HTTP executor shared by every outbound call.

Each call runs at most `max_attempts` attempts. An attempt ends in one of
three outcomes:

    Success    the accepted status arrived and the body decoded
    Retryable  transport error, 5xx, or a body that failed to decode
    Terminal   any other 4xx; returned at once without further attempts

Attempts after the first wait `retry_delay` seconds. The wait wakes early
when the caller's context finishes, and the context's own error is raised
in place of the last HTTP error. The context is checked again while the
body streams in and after every attempt, so a result that arrives after
the context finished is never returned.
"""
import logging
import threading
from typing import Any, Callable, Optional, Type

import requests
from requests.adapters import HTTPAdapter

from .config_loader import ClientConfig
from .context import CallContext
from .errors import SecretManagerError, TransientFailure, client_error, quote_body
from .models import AttemptOutcome, HttpRequest, Retryable, Success, Terminal

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class RetryingExecutor:
    """Sends requests through a pooled session with fixed-delay retry."""

    def __init__(self, config: ClientConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session
        self._session_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        """Lazy-initialize the pooled session."""
        with self._session_lock:
            if self._session is None:
                session = requests.Session()
                adapter = HTTPAdapter(
                    pool_connections=self.config.max_idle_conns,
                    pool_maxsize=self.config.max_idle_conns_per_host,
                )
                session.mount("http://", adapter)
                session.mount("https://", adapter)
                self._session = session
            return self._session

    def close(self) -> None:
        with self._session_lock:
            if self._session is not None:
                self._session.close()
                self._session = None

    def run(
        self,
        ctx: CallContext,
        attempt: Callable[[], AttemptOutcome],
        phase: str,
        exhausted_error: Type[SecretManagerError] = TransientFailure,
    ) -> Any:
        """
        Drive `attempt` until it succeeds, fails terminally, or attempts run out.

        Args:
            ctx: Caller's cancellation/deadline context
            attempt: Zero-argument callable performing one attempt
            phase: Phase name used in log lines and error messages, e.g. "access secret"
            exhausted_error: Error class raised once every attempt has failed

        Returns:
            The value carried by the Success outcome

        Raises:
            Cancelled: The context finished before success
            SecretManagerError: Terminal cause, or exhausted_error wrapping the last cause
        """
        last_error: Optional[Exception] = None

        for attempt_number in range(self.config.max_attempts):
            if attempt_number > 0:
                logger.info(f"retrying {phase} attempt={attempt_number + 1}")
                if ctx.wait(self.config.retry_delay):
                    raise ctx.error()
            ctx.raise_if_done()

            outcome = attempt()

            # Cancellation takes priority over whatever the attempt produced
            ctx.raise_if_done()

            if isinstance(outcome, Success):
                return outcome.value
            if isinstance(outcome, Terminal):
                raise outcome.cause

            last_error = outcome.cause
            logger.warning(f"failed to {phase} attempt={attempt_number + 1} error={last_error}")

        raise exhausted_error(f"failed to {phase}: {last_error}") from last_error

    def call(
        self,
        ctx: CallContext,
        request: HttpRequest,
        phase: str,
        exhausted_error: Type[SecretManagerError] = TransientFailure,
    ) -> Any:
        """Run `request` under the retry policy and return its decoded value."""
        return self.run(
            ctx,
            lambda: self.attempt(ctx, request, phase),
            phase,
            exhausted_error=exhausted_error,
        )

    def attempt(self, ctx: CallContext, request: HttpRequest, phase: str) -> AttemptOutcome:
        """Send `request` once and classify the result."""
        timeout = self.config.request_timeout
        remaining = ctx.remaining()
        if remaining is not None:
            if remaining <= 0:
                ctx.raise_if_done()
            timeout = min(timeout, remaining)

        try:
            response = self.session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body,
                timeout=timeout,
                stream=True,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            return Retryable(TransientFailure(f"{type(e).__name__}: {e}"))

        try:
            body = self._read_capped(ctx, response)
        except requests.RequestException as e:
            return Retryable(TransientFailure(f"failed to read response body: {e}"))
        finally:
            response.close()

        status = response.status_code
        if status in request.ok_statuses:
            try:
                return Success(request.decode(status, body))
            except ValueError as e:
                return Retryable(TransientFailure(f"failed to decode response: {e}"))

        text = body.decode("utf-8", errors="replace").strip()
        if 400 <= status < 500:
            logger.error(f"{phase} denied status={status}")
            return Terminal(client_error(phase, status, text))

        if text:
            return Retryable(TransientFailure(f"status {status}: {quote_body(text)}"))
        return Retryable(TransientFailure(f"status {status}"))

    def _read_capped(self, ctx: CallContext, response: requests.Response) -> bytes:
        """
        Read at most max_body_size bytes; anything past the cap is dropped.

        Raises the context error as soon as a chunk arrives after the context
        finished.
        """
        limit = self.config.max_body_size
        chunks = []
        size = 0
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            ctx.raise_if_done()
            if size + len(chunk) > limit:
                chunks.append(chunk[:limit - size])
                logger.warning(f"response body truncated at {limit} bytes url={response.url}")
                break
            chunks.append(chunk)
            size += len(chunk)
        return b"".join(chunks)
