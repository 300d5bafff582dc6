"""Ownership of the persistent transport handle.

The manager holds exactly one live ``TransportHandle`` (a ``requests.Session``
with its urllib3 connection pools) behind a lock. Callers lease the handle for
one attempt; a rebuild swaps the reference atomically and the stale handle is
shut down once the last attempt using it has returned.
"""

from __future__ import annotations

import contextlib
import logging
import socket
import ssl
import threading
import time
from typing import Any, Callable, Mapping

import requests
import urllib3
from requests.adapters import HTTPAdapter

from .builder import OutgoingRequest
from .config import ClientConfig, TlsPolicy
from .errors import ClientClosed, TransportClosed


def build_ssl_context(policy: TlsPolicy) -> ssl.SSLContext:
    """Create the client SSL context for ``policy``.

    Peer verification and hostname checking are on unless the policy turns
    them off; the minimum protocol version defaults to TLS 1.2.
    """
    if not policy.verify:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    else:
        ctx = ssl.create_default_context(
            purpose=ssl.Purpose.SERVER_AUTH, cafile=policy.ca_file
        )
        ctx.verify_mode = ssl.CERT_REQUIRED
        ctx.check_hostname = policy.verify_hostname
    ctx.minimum_version = policy.minimum_version
    ctx.options |= ssl.OP_NO_COMPRESSION
    return ctx


class TlsAdapter(HTTPAdapter):
    """HTTPAdapter whose pools use a caller-built SSL context."""

    def __init__(
        self,
        ssl_context: ssl.SSLContext,
        *,
        assert_hostname: bool = True,
        **kwargs: Any,
    ) -> None:
        self._ssl_context = ssl_context
        self._assert_hostname = assert_hostname
        super().__init__(**kwargs)

    def init_poolmanager(
        self, connections: int, maxsize: int, block: bool = False, **pool_kwargs: Any
    ) -> None:
        pool_kwargs["ssl_context"] = self._ssl_context
        if not self._assert_hostname:
            pool_kwargs["assert_hostname"] = False
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


def _set_proxy(session: requests.Session, value: Any) -> None:
    if isinstance(value, Mapping):
        session.proxies.update(value)
    else:
        session.proxies.update({"http": str(value), "https": str(value)})


def _set_attr(name: str) -> Callable[[requests.Session, Any], None]:
    def apply(session: requests.Session, value: Any) -> None:
        setattr(session, name, value)

    return apply


# Transport options accepted by name; anything else is logged and dropped.
ADAPTER_OPTIONS: Mapping[str, str] = {
    "pool_connections": "pool_connections",
    "pool_size": "pool_maxsize",
    "pool_block": "pool_block",
}
SESSION_OPTIONS: Mapping[str, Callable[[requests.Session, Any], None]] = {
    "proxy": _set_proxy,
    "trust_env": _set_attr("trust_env"),
    "max_redirects": _set_attr("max_redirects"),
    "cert": _set_attr("cert"),
}
HANDLE_OPTIONS = frozenset({"follow_redirects"})


class TransportHandle:
    """One ``requests.Session`` plus the bookkeeping the manager needs.

    ``inflight`` and ``retired`` are only changed under the manager's lock.
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        timeout: tuple[float | None, float | None] | None,
        follow_redirects: bool = False,
    ) -> None:
        self.session = session
        self.timeout = timeout
        self.follow_redirects = follow_redirects
        self.inflight = 0
        self.retired = False
        self.closed = False
        self.last_used = time.monotonic()

    def send(
        self,
        request: OutgoingRequest,
        url: str,
        timeout: tuple[float | None, float | None] | None,
        *,
        stream: bool = False,
    ) -> requests.Response:
        if self.closed:
            raise TransportClosed("transport handle used after shutdown")
        return self.session.request(
            request.method,
            url,
            headers=dict(request.headers),
            data=request.body,
            timeout=timeout,
            allow_redirects=self.follow_redirects,
            stream=stream,
        )

    def drain(self) -> None:
        """Close pooled idle connections; the handle stays usable."""
        for adapter in self.session.adapters.values():
            adapter.close()

    def shutdown(self) -> None:
        self.closed = True
        self.session.close()


BODY_CHUNK_SIZE = 64 * 1024


def abort_response(response: requests.Response) -> None:
    """Tear down the connection under ``response``, waking a blocked read.

    Safe to call from any thread and more than once.
    """
    connection = getattr(response.raw, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is not None:
        with contextlib.suppress(OSError):
            sock.shutdown(socket.SHUT_RDWR)
    with contextlib.suppress(Exception):
        response.close()


def read_body(
    response: requests.Response, stop: Callable[[], bool]
) -> bool:
    """Read a streamed response body into ``response.content``.

    Each read returns whatever one receive produced, so ``stop`` is checked
    even while a server trickles the body. When ``stop`` returns True the
    connection is aborted and False is returned.
    """
    chunks: list[bytes] = []
    while True:
        if stop():
            abort_response(response)
            return False
        try:
            chunk = response.raw.read1(BODY_CHUNK_SIZE, decode_content=True)
        except urllib3.exceptions.ProtocolError as exc:
            raise requests.exceptions.ChunkedEncodingError(exc) from exc
        except urllib3.exceptions.DecodeError as exc:
            raise requests.exceptions.ContentDecodingError(exc) from exc
        except urllib3.exceptions.ReadTimeoutError as exc:
            raise requests.exceptions.ReadTimeout(exc) from exc
        if not chunk:
            break
        chunks.append(chunk)
    # An aborted socket reads as end-of-body.
    if stop():
        abort_response(response)
        return False
    response._content = b"".join(chunks)
    response._content_consumed = True
    response.raw.release_conn()
    return True


class ConnectionManager:
    """Opens, leases, rebuilds and shuts down the transport handle."""

    def __init__(
        self,
        config: ClientConfig,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._closed = False
        self.rebuilds = 0
        self._handle: TransportHandle | None = self.open()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current(self) -> TransportHandle | None:
        with self._lock:
            return self._handle

    def open(self) -> TransportHandle:
        """Create a new handle configured from the client config."""
        config = self._config
        adapter_kwargs: dict[str, Any] = {}
        session_settings: list[tuple[Callable[[requests.Session, Any], None], Any]] = []
        follow_redirects = False
        for key, value in config.transport_options.items():
            if key in ADAPTER_OPTIONS:
                adapter_kwargs[ADAPTER_OPTIONS[key]] = value
            elif key in SESSION_OPTIONS:
                session_settings.append((SESSION_OPTIONS[key], value))
            elif key in HANDLE_OPTIONS:
                follow_redirects = bool(value)
            else:
                self._log.debug("Ignoring unsupported option: %s", key)

        session = requests.Session()
        plain = HTTPAdapter(**adapter_kwargs)
        session.mount("http://", plain)
        if config.secure:
            tls = config.tls
            session.mount(
                "https://",
                TlsAdapter(
                    build_ssl_context(tls),
                    assert_hostname=tls.verify and tls.verify_hostname,
                    **adapter_kwargs,
                ),
            )
            session.verify = (tls.ca_file or True) if tls.verify else False
        else:
            session.mount("https://", plain)
        for apply, value in session_settings:
            apply(session, value)

        self._log.debug(
            "Opened transport: name=%s, origin=%s", config.name, config.origin
        )
        return TransportHandle(
            session,
            timeout=config.transport_timeout(),
            follow_redirects=follow_redirects,
        )

    def _idle_expired(self, handle: TransportHandle) -> bool:
        idle = self._config.idle_timeout_seconds
        return idle is not None and time.monotonic() - handle.last_used > idle

    def acquire(self) -> TransportHandle:
        """Lease the current handle for one attempt.

        Raises:
            ClientClosed: The manager was shut down.
        """
        with self._lock:
            if self._closed:
                raise ClientClosed("client is closed")
            handle = self._handle
            if handle is None:
                handle = self._handle = self.open()
            elif handle.inflight == 0 and self._idle_expired(handle):
                self._log.debug("Dropping idle connections: name=%s", self._config.name)
                handle.drain()
            handle.inflight += 1
            return handle

    def release(self, handle: TransportHandle) -> None:
        with self._lock:
            handle.inflight -= 1
            handle.last_used = time.monotonic()
            finished = handle.retired and handle.inflight == 0
        if finished:
            self.shutdown(handle)

    def rebuild(self, stale: TransportHandle) -> bool:
        """Replace ``stale`` with a fresh handle if it is still current.

        Returns:
            True if this call swapped the handle, False if another caller
            already did.
        """
        with self._lock:
            if self._closed:
                raise ClientClosed("client is closed")
            if self._handle is not stale:
                return False
            self._handle = self.open()
            self.rebuilds += 1
            stale.retired = True
            finished = stale.inflight == 0
        if finished:
            self.shutdown(stale)
        return True

    def shutdown(self, handle: TransportHandle | None = None) -> None:
        """Shut down ``handle``, or every handle and the manager itself."""
        if handle is not None:
            if not handle.closed:
                handle.shutdown()
            return
        with self._lock:
            self._closed = True
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.shutdown()
