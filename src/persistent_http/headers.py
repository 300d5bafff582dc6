"""Header normalization shared by configuration and request building."""

from __future__ import annotations

from typing import Any, Mapping

from .errors import HeaderConflict


def normalize_headers(headers: Mapping[Any, Any] | None) -> dict[str, str]:
    """Return a copy of ``headers`` with lowercase names and string values.

    When two input names differ only by case, the later one wins.
    """
    if not headers:
        return {}
    return {
        str(name).strip().lower(): str(value)
        for name, value in headers.items()
    }


def merge_headers(
    defaults: Mapping[Any, Any] | None,
    overrides: Mapping[Any, Any] | None,
) -> dict[str, str]:
    """Merge per-request headers over defaults, case-insensitively."""
    merged = normalize_headers(defaults)
    merged.update(normalize_headers(overrides))
    return merged


def validate_host(
    headers: Mapping[str, str], expected_host: str
) -> dict[str, str]:
    """Check the ``host`` entry against ``expected_host``.

    Args:
        headers: Normalized headers.
        expected_host: Host of the configured base URL.

    Returns:
        A new mapping with ``host`` set to ``expected_host`` when absent.

    Raises:
        HeaderConflict: If an explicit ``host`` names a different host.
    """
    validated = dict(headers)
    explicit = validated.get("host")
    if explicit is None:
        validated["host"] = expected_host
    elif explicit.strip().lower() != expected_host.lower():
        raise HeaderConflict(expected_host, explicit)
    return validated
