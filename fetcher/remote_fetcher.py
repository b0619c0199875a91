"""HTTP retrieval of remote event documents."""
import logging
import socket
from typing import Optional

import requests
from urllib3.exceptions import NameResolutionError

from fetcher.errors import (
    AuthenticationRequiredError,
    HostResolutionError,
    HostUnreachableError,
    RemoteHttpError,
)
from processor.models import FetchedDocument

logger = logging.getLogger(__name__)

AUTHENTICATION_STATUSES = (401, 407)


class RemoteFetcher:
    """Fetcher that downloads a URL in a single attempt."""

    USER_AGENT = 'source-import-pipeline/1.0 (+https://github.com/)'

    def __init__(self, timeout: int = 30, session: Optional[requests.Session] = None):
        """
        Initialize the fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional requests session to reuse connections
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, url: str) -> FetchedDocument:
        """
        Download the document at a URL.

        No retries are made here; callers decide whether to try again.

        Args:
            url: Absolute http(s) or webcal URL

        Returns:
            FetchedDocument with decoded content and declared content type

        Raises:
            RemoteHttpError: Remote answered with an error status
            AuthenticationRequiredError: Remote demands credentials
            HostResolutionError: Host name could not be resolved
            HostUnreachableError: Connection failed or timed out
        """
        request_url = self._rewrite_scheme(url)
        logger.info(f"Fetching {request_url} (timeout {self.timeout}s)")

        try:
            response = self.session.get(
                request_url,
                timeout=self.timeout,
                headers={'User-Agent': self.USER_AGENT}
            )
        except requests.Timeout as e:
            raise HostUnreachableError(url, 'timed out') from e
        except (requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema,
                requests.exceptions.InvalidURL) as e:
            raise HostResolutionError(url, 'invalid URL') from e
        except requests.TooManyRedirects as e:
            raise RemoteHttpError(url, detail='too many redirects') from e
        except requests.ConnectionError as e:
            if self._is_name_resolution_failure(e):
                raise HostResolutionError(url, 'name resolution failed') from e
            raise HostUnreachableError(url, 'connection failed') from e
        except requests.RequestException as e:
            raise HostUnreachableError(url, type(e).__name__) from e

        if response.status_code in AUTHENTICATION_STATUSES:
            raise AuthenticationRequiredError(url, response.status_code)
        if response.status_code >= 400:
            raise RemoteHttpError(url, response.status_code)

        content_type = response.headers.get('Content-Type', '')
        logger.info(
            f"Fetched {len(response.content)} bytes from {request_url}",
            extra={'status_code': response.status_code, 'content_type': content_type}
        )
        return FetchedDocument(
            url=url,
            content=self._decode(response, content_type),
            content_type=content_type
        )

    def _rewrite_scheme(self, url: str) -> str:
        """Calendar subscription links use webcal://, which is plain HTTP."""
        if url.lower().startswith('webcal://'):
            return 'http://' + url[len('webcal://'):]
        return url

    def _decode(self, response: requests.Response, content_type: str) -> str:
        # requests assumes ISO-8859-1 for text/* without a charset
        if 'charset' in content_type.lower():
            return response.text
        return response.content.decode('utf-8', errors='replace')

    def _is_name_resolution_failure(self, error: BaseException) -> bool:
        """
        Walk the wrapped causes of a connection error looking for a DNS failure.

        Args:
            error: Exception raised by requests

        Returns:
            True if any cause is a name resolution error
        """
        pending = [error]
        seen = set()
        while pending:
            current = pending.pop()
            if id(current) in seen:
                continue
            seen.add(id(current))
            if isinstance(current, (NameResolutionError, socket.gaierror)):
                return True
            causes = [getattr(current, 'reason', None), current.__cause__, current.__context__]
            causes.extend(current.args)
            pending.extend(c for c in causes if isinstance(c, BaseException))
        return False
