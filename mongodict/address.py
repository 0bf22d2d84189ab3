"""Lookup key normalization."""

from __future__ import annotations

DETAIL_DELIMITER = "+"
DOMAIN_SEPARATOR = "@"


def normalize_address(key: str) -> str:
    """Strip a plus-address detail: ``local+detail@domain`` -> ``local@domain``.

    Keys without both a ``+`` and an ``@``, or whose first ``+`` sits after the
    first ``@``, are returned unchanged.
    """

    plus = key.find(DETAIL_DELIMITER)
    at = key.find(DOMAIN_SEPARATOR)
    if plus < 0 or at < 0 or plus > at:
        return key
    return key[:plus] + key[at:]


__all__ = ["normalize_address"]
