"""Typed access to ``ORGAUTH_*`` environment variables."""

from __future__ import annotations

import os
from typing import Mapping, Optional


class Env:
    """Read environment variables with light type coercion.

    Args:
        environ: Mapping to read from. Defaults to :data:`os.environ`,
            which tests can replace with a plain dict.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._environ.get(key)
        if value is None or value == "":
            return default
        return value

    def get_number(self, key: str, default: Optional[float] = None) -> Optional[float]:
        """Return the variable parsed as a number, or *default*.

        Integral values come back as ``int``. Unparseable values are treated
        as absent.
        """
        raw = self.get_string(key)
        if raw is None:
            return default
        try:
            number = float(raw)
        except ValueError:
            return default
        if number.is_integer():
            return int(number)
        return number
