"""Configuration models for the persistent HttpClient."""

from __future__ import annotations

import os
import ssl
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import urlsplit

from ._version import __version__
from .headers import normalize_headers, validate_host

DEFAULT_NAME = "http-client"
NAME_ENV_VAR = "HTTP_CLIENT_NAME"
CA_FILE_ENV_VAR = "SSL_CERT_FILE"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _default_headers() -> Mapping[str, str]:
    """Return the headers sent with every request unless overridden."""

    return MappingProxyType({"user-agent": f"persistent-http/{__version__}"})


def _empty_options() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class TlsPolicy:
    """TLS settings applied to https endpoints."""

    verify: bool = True
    verify_hostname: bool = True
    minimum_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2
    ca_file: str | None = None


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for HttpClient behavior.

    Only ``base_url`` is required. The scheme, host and port of the base URL
    form the authority every request is sent to; its path is not used.
    """

    base_url: str
    name: str = DEFAULT_NAME
    default_headers: Mapping[str, str] = field(default_factory=_default_headers)
    request_timeout_seconds: float | None = 30.0
    max_retries: int = 1
    connect_timeout_seconds: float | None = None
    read_timeout_seconds: float | None = None
    idle_timeout_seconds: float | None = 5.0
    tls: TlsPolicy = field(default_factory=TlsPolicy)
    transport_options: Mapping[str, Any] = field(default_factory=_empty_options)

    def __post_init__(self) -> None:
        parts = urlsplit(self.base_url)
        if parts.scheme not in _DEFAULT_PORTS:
            raise ValueError(
                f"base_url scheme must be http or https, got {parts.scheme!r}"
            )
        if not parts.hostname:
            raise ValueError(f"base_url has no host: {self.base_url!r}")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        for label in (
            "request_timeout_seconds",
            "connect_timeout_seconds",
            "read_timeout_seconds",
            "idle_timeout_seconds",
        ):
            value = getattr(self, label)
            if value is not None and value <= 0:
                raise ValueError(f"{label} must be > 0 when provided")

        headers = normalize_headers(self.default_headers)
        if "host" in headers:
            validate_host(headers, parts.hostname)

        # Freeze copied mappings to avoid post-init mutation side effects.
        object.__setattr__(
            self, "default_headers", MappingProxyType(headers)
        )
        object.__setattr__(
            self,
            "transport_options",
            MappingProxyType(dict(self.transport_options)),
        )

    @classmethod
    def from_env(
        cls,
        base_url: str,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "ClientConfig":
        """Build a config, filling the name and CA file from the environment.

        ``HTTP_CLIENT_NAME`` supplies the name and ``SSL_CERT_FILE`` the
        trust-anchor file, unless given explicitly in ``overrides``.
        """
        env = os.environ if environ is None else environ
        overrides.setdefault("name", env.get(NAME_ENV_VAR, DEFAULT_NAME))
        tls = overrides.get("tls") or TlsPolicy()
        if tls.ca_file is None and env.get(CA_FILE_ENV_VAR):
            tls = TlsPolicy(
                verify=tls.verify,
                verify_hostname=tls.verify_hostname,
                minimum_version=tls.minimum_version,
                ca_file=env[CA_FILE_ENV_VAR],
            )
        overrides["tls"] = tls
        return cls(base_url, **overrides)

    @property
    def scheme(self) -> str:
        return urlsplit(self.base_url).scheme

    @property
    def host(self) -> str:
        hostname = urlsplit(self.base_url).hostname
        assert hostname is not None
        return hostname

    @property
    def port(self) -> int:
        return urlsplit(self.base_url).port or _DEFAULT_PORTS[self.scheme]

    @property
    def origin(self) -> str:
        """Return ``scheme://host[:port]`` with the default port omitted."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port == _DEFAULT_PORTS[self.scheme]:
            return f"{self.scheme}://{host}"
        return f"{self.scheme}://{host}:{self.port}"

    @property
    def secure(self) -> bool:
        return self.scheme == "https"

    def transport_timeout(self) -> tuple[float | None, float | None] | None:
        """Return the ``(connect, read)`` pair, or None when both are unset."""
        if (
            self.connect_timeout_seconds is None
            and self.read_timeout_seconds is None
        ):
            return None
        return (self.connect_timeout_seconds, self.read_timeout_seconds)
