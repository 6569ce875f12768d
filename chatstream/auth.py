"""Bearer token providers.

A token provider is any zero-argument callable returning the bearer token
string. Errors raised by a provider reach the caller of the API method
unchanged.
"""

from __future__ import annotations

import os

from .errors import AuthTokenUnavailable


class StaticTokenProvider:
    """Return one fixed token, typically taken from configuration."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    def __call__(self) -> str:
        if not self._token:
            raise AuthTokenUnavailable("No auth token configured")
        return self._token


class EnvTokenProvider:
    """Read the token from an environment variable on every call."""

    def __init__(self, var_name: str = "CHATSTREAM_AUTH_TOKEN") -> None:
        self.var_name = var_name

    def __call__(self) -> str:
        token = os.getenv(self.var_name, "").strip()
        if not token:
            raise AuthTokenUnavailable(f"Environment variable {self.var_name} is not set")
        return token
