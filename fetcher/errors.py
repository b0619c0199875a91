"""Exceptions raised when a remote document cannot be retrieved."""
from typing import Optional
from urllib.parse import urlparse


class FetchError(Exception):
    """Base class for remote retrieval failures."""

    def __init__(self, url: str, detail: str = ''):
        super().__init__(detail or url)
        self.url = url
        self.detail = detail

    @property
    def host(self) -> str:
        return urlparse(self.url).hostname or self.url


class RemoteHttpError(FetchError):
    """Remote site answered with an error status."""

    def __init__(self, url: str, status_code: Optional[int] = None, detail: str = ''):
        super().__init__(url, detail or f"HTTP {status_code}")
        self.status_code = status_code


class HostUnreachableError(FetchError):
    """Remote host could not be reached or did not answer in time."""


class HostResolutionError(FetchError):
    """Host name of the URL could not be resolved."""


class AuthenticationRequiredError(FetchError):
    """Remote site demands credentials."""

    def __init__(self, url: str, status_code: int = 401, detail: str = ''):
        super().__init__(url, detail or f"HTTP {status_code}")
        self.status_code = status_code
