"""Synchronous persistent HTTP client.

One ``HttpClient`` talks to one origin over reused connections. Connection
failures rebuild the transport and retry up to ``max_retries``; request
construction is normalized across verbs.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Mapping

import requests

from .builder import RequestBuilder
from .config import ClientConfig
from .connection import ConnectionManager
from .errors import InvalidJsonResponse
from .executor import RequestExecutor


class HttpClient:
    """Persistent HTTP client bound to ``config.base_url``.

    Safe to share between threads. Call ``close()`` (or use it as a context
    manager) to release pooled connections; no calls are valid afterwards.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        """Create a new HttpClient and open its transport.

        Args:
            config: Target origin, timeouts, retry bound and TLS policy.
            logger: Log sink; defaults to this module's logger.
        """
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._builder = RequestBuilder(
            config.default_headers, config.host, self._log
        )
        self._connections = ConnectionManager(config, self._log)
        self._executor = RequestExecutor(
            config, self._builder, self._connections, self._log
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def default_headers(self) -> Mapping[str, str]:
        return self._builder.default_headers

    def set_default_headers(self, headers: Mapping[str, str]) -> None:
        """Replace the headers sent with every subsequent request."""
        self._builder.set_default_headers(headers)

    def execute(
        self,
        verb: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        payload: Any = None,
    ) -> requests.Response:
        """Perform one request with any of the supported verbs."""
        return self._executor.execute(verb, path, headers, payload)

    @staticmethod
    def _body_payload(payload: Any, params: Any) -> Any:
        if params is None:
            return payload
        warnings.warn(
            "`params` on write verbs is deprecated; use `payload`",
            DeprecationWarning,
            stacklevel=3,
        )
        return payload if payload is not None else params

    def head(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Any = None,
    ) -> requests.Response:
        """Perform an HTTP HEAD request; ``params`` become the query string."""
        return self.execute("HEAD", path, headers=headers, payload=params)

    def get(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Any = None,
    ) -> requests.Response:
        """Perform an HTTP GET request.

        Args:
            path: Request path, optionally with a query string.
            headers: Per-request headers merged over the defaults.
            params: Query parameters; mapping, pairs, or an encoded string.
                Must be empty when ``path`` already has a query.

        Returns:
            The response, whatever its status code.
        """
        return self.execute("GET", path, headers=headers, payload=params)

    def post(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        payload: Any = None,
        params: Any = None,
    ) -> requests.Response:
        """Perform an HTTP POST request.

        Args:
            path: Request path.
            headers: Per-request headers merged over the defaults.
            payload: Body; text/bytes are sent verbatim, other values are
                encoded according to the content-type header (JSON if unset).
            params: Deprecated alias of ``payload``.
        """
        return self.execute(
            "POST",
            path,
            headers=headers,
            payload=self._body_payload(payload, params),
        )

    def put(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        payload: Any = None,
        params: Any = None,
    ) -> requests.Response:
        return self.execute(
            "PUT",
            path,
            headers=headers,
            payload=self._body_payload(payload, params),
        )

    def patch(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        payload: Any = None,
        params: Any = None,
    ) -> requests.Response:
        return self.execute(
            "PATCH",
            path,
            headers=headers,
            payload=self._body_payload(payload, params),
        )

    def delete(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        payload: Any = None,
        params: Any = None,
    ) -> requests.Response:
        """Perform an HTTP DELETE request; a body is optional."""
        return self.execute(
            "DELETE",
            path,
            headers=headers,
            payload=self._body_payload(payload, params),
        )

    def get_json(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Any = None,
    ) -> Any:
        """GET ``path`` and decode the response body as JSON.

        Raises:
            InvalidJsonResponse: The body is not valid JSON.
        """
        response = self.get(path, headers=headers, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise InvalidJsonResponse(f"Invalid JSON response: {exc}") from exc

    def close(self) -> None:
        """Abort running requests and release all pooled connections."""
        self._executor.close()
        self._connections.shutdown()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
