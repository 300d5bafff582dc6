"""Request execution: deadline, classification and retry-with-rebuild."""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Mapping

import requests

from .builder import OutgoingRequest, RequestBuilder
from .config import ClientConfig
from .connection import (
    ConnectionManager,
    TransportHandle,
    abort_response,
    read_body,
)
from .errors import (
    ClientClosed,
    ConnectionExhausted,
    HttpClientError,
    RequestTimeout,
    TransportClosed,
)
from .types import Err, Ok, Result

TransportTimeout = tuple[float | None, float | None] | None


class FailureKind(enum.Enum):
    CONNECTION = "connection"
    DEADLINE = "deadline"
    OTHER = "other"


# Failures meaning the connection itself broke; these are retried.
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    requests.exceptions.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
    ConnectionResetError,
    TransportClosed,
)


def format_duration_ms(seconds: float) -> str:
    return f"{round(seconds * 1000, 2)} ms"


def classify_failure(
    error: BaseException, elapsed_s: float, deadline_s: float | None
) -> FailureKind:
    """Map an attempt's exception to the retry decision it implies.

    A transport timeout raised once the deadline has elapsed counts as the
    deadline, since socket timeouts are clipped to it.
    """
    if (
        deadline_s is not None
        and isinstance(error, requests.exceptions.Timeout)
        and elapsed_s >= deadline_s
    ):
        return FailureKind.DEADLINE
    if isinstance(error, CONNECTION_ERRORS):
        return FailureKind.CONNECTION
    return FailureKind.OTHER


def clip_timeout(
    configured: TransportTimeout, deadline_s: float | None
) -> TransportTimeout:
    """Bound the per-socket ``(connect, read)`` timeouts by the deadline."""
    if deadline_s is None:
        return configured
    if configured is None:
        return (deadline_s, deadline_s)
    return tuple(  # type: ignore[return-value]
        deadline_s if value is None else min(value, deadline_s)
        for value in configured
    )


class Attempt:
    """State shared by a waiting caller and the thread running its attempt.

    Once ``abandon()`` has run, the attempt is never sent, and a response
    that is already streaming is aborted. ``ready`` is set when the thread
    finishes or the client closes.
    """

    def __init__(self, deadline_at: float) -> None:
        self.deadline_at = deadline_at
        self.ready = threading.Event()
        self.response: requests.Response | None = None
        self.error: BaseException | None = None
        self._lock = threading.Lock()
        self._abandoned = False
        self._streaming: requests.Response | None = None

    def begin(self) -> bool:
        """Claim the right to send; False once the caller has given up."""
        with self._lock:
            return not self._abandoned

    def start_streaming(self, response: requests.Response) -> bool:
        """Record the response whose body is being read.

        Returns False if the caller already gave up on this attempt.
        """
        with self._lock:
            if self._abandoned:
                return False
            self._streaming = response
            return True

    def should_stop(self) -> bool:
        return self._abandoned or time.monotonic() >= self.deadline_at

    def abandon(self) -> None:
        with self._lock:
            self._abandoned = True
            streaming = self._streaming
        if streaming is not None:
            abort_response(streaming)


class RequestExecutor:
    """Runs one logical call: build, dispatch, classify, retry.

    The built request is reused verbatim on every retry, so the body is
    serialized once per call.
    """

    def __init__(
        self,
        config: ClientConfig,
        builder: RequestBuilder,
        connections: ConnectionManager,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._config = config
        self._builder = builder
        self._connections = connections
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._closed = False
        self._attempts: set[Attempt] = set()

    def _register(self, attempt: Attempt) -> None:
        with self._lock:
            if self._closed:
                raise ClientClosed("client is closed")
            self._attempts.add(attempt)

    def _unregister(self, attempt: Attempt) -> None:
        with self._lock:
            self._attempts.discard(attempt)

    def _run_attempt(
        self,
        attempt: Attempt,
        handle: TransportHandle,
        request: OutgoingRequest,
        url: str,
        timeout: TransportTimeout,
    ) -> None:
        """Body of an attempt thread: send, then stream the body in."""
        try:
            if not attempt.begin():
                return
            response = handle.send(request, url, timeout, stream=True)
            if not attempt.start_streaming(response):
                abort_response(response)
                return
            if read_body(response, attempt.should_stop):
                attempt.response = response
        except Exception as exc:
            attempt.error = exc
        finally:
            self._connections.release(handle)
            attempt.ready.set()

    def _dispatch(
        self, handle: TransportHandle, request: OutgoingRequest, url: str
    ) -> Result[requests.Response, BaseException]:
        """Run one attempt on ``handle`` and return its classified outcome.

        The handle lease taken by the caller is released exactly once, by
        whichever side ends up owning the attempt.
        """
        deadline = self._config.request_timeout_seconds
        timeout = clip_timeout(handle.timeout, deadline)
        started = time.monotonic()

        def failed(
            error: BaseException, kind: FailureKind | None = None
        ) -> Err[Any]:
            elapsed = time.monotonic() - started
            return Err(
                error,
                meta={
                    "failure": kind or classify_failure(error, elapsed, deadline),
                    "elapsed_s": elapsed,
                },
            )

        if deadline is None:
            try:
                response = handle.send(request, url, timeout)
            except Exception as exc:
                return failed(exc)
            finally:
                self._connections.release(handle)
            return Ok(response, meta={"elapsed_s": time.monotonic() - started})

        attempt = Attempt(started + deadline)
        try:
            self._register(attempt)
        except ClientClosed:
            self._connections.release(handle)
            raise
        try:
            # One thread per attempt: the deadline never covers queueing.
            threading.Thread(
                target=self._run_attempt,
                args=(attempt, handle, request, url, timeout),
                name=f"{self._config.name}-attempt",
                daemon=True,
            ).start()
            attempt.ready.wait(deadline)
            if attempt.response is not None:
                return Ok(
                    attempt.response,
                    meta={"elapsed_s": time.monotonic() - started},
                )
            if attempt.error is not None:
                return failed(attempt.error)
            attempt.abandon()
            if self._closed:
                raise ClientClosed("client closed during request")
            return failed(
                TimeoutError(f"deadline of {deadline}s exceeded"),
                FailureKind.DEADLINE,
            )
        finally:
            self._unregister(attempt)

    def _build(
        self,
        verb: str,
        path: str,
        headers: Mapping[str, str] | None,
        payload: Any,
    ) -> OutgoingRequest:
        try:
            return self._builder.build(verb, path, headers, payload)
        except (HttpClientError, ValueError) as exc:
            self._log.error(
                "Request build failed: method=%s, path=%s, error=%s",
                verb.upper(),
                path,
                exc,
            )
            raise

    def execute(
        self,
        verb: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        payload: Any = None,
    ) -> requests.Response:
        """Execute one logical call and return the response.

        Raises:
            RequestTimeout: The deadline elapsed during an attempt.
            ConnectionExhausted: Connection failures outlasted ``max_retries``.
            HttpClientError: Any build-time error, raised before dispatch.
        """
        request = self._build(verb, path, headers, payload)
        url = f"{self._config.origin}{request.path}"
        max_retries = self._config.max_retries
        retries = 0
        started = time.monotonic()

        while True:
            handle = self._connections.acquire()
            outcome = self._dispatch(handle, request, url)
            elapsed = outcome.meta["elapsed_s"]
            if outcome.ok:
                self._log.debug(
                    "Request completed: method=%s, path=%s, status=%s, "
                    "duration=%s",
                    request.method,
                    request.path,
                    outcome.value.status_code,
                    format_duration_ms(elapsed),
                )
                return outcome.value

            error = outcome.error
            kind = outcome.meta["failure"]
            if kind is FailureKind.DEADLINE:
                self._log.error(
                    "Request timed out after %s: method=%s, path=%s",
                    format_duration_ms(elapsed),
                    request.method,
                    request.path,
                )
                raise RequestTimeout(
                    f"{request.method} {request.path} timed out after "
                    f"{format_duration_ms(elapsed)}",
                    elapsed_s=elapsed,
                ) from error

            if kind is FailureKind.OTHER:
                self._log.error(
                    "Request failed after %s: method=%s, path=%s, error=%s",
                    format_duration_ms(time.monotonic() - started),
                    request.method,
                    request.path,
                    type(error).__name__,
                )
                raise error

            if retries >= max_retries:
                total = time.monotonic() - started
                self._log.error(
                    "Connection failed after %d retries (%s): %s",
                    retries,
                    format_duration_ms(total),
                    error,
                )
                raise ConnectionExhausted(
                    f"{request.method} {request.path}: connection failed "
                    f"after {retries} retries "
                    f"({format_duration_ms(total)}): {error}",
                    retries=retries,
                    elapsed_s=total,
                ) from error

            retries += 1
            self._log.debug(
                "Connection failed: %s - rebuilding HTTP client (retry %d/%d)",
                error,
                retries,
                max_retries,
            )
            self._connections.rebuild(handle)

    def close(self) -> None:
        """Refuse new attempts and abort the ones still running."""
        with self._lock:
            self._closed = True
            attempts, self._attempts = self._attempts, set()
        for attempt in attempts:
            attempt.abandon()
            attempt.ready.set()
