"""Mapping of pipeline exceptions to user-facing failure categories."""
import logging
import socket
from typing import Optional
from urllib.parse import urlparse

import requests

from fetcher.errors import (
    AuthenticationRequiredError,
    FetchError,
    HostResolutionError,
    HostUnreachableError,
    RemoteHttpError,
)
from parsers.base import ParseError
from processor.models import ClassifiedFailure, FailureCategory
from storage.source_repository import SourceValidationError

logger = logging.getLogger(__name__)

TEMPLATES = {
    FailureCategory.REMOTE_HTTP_ERROR:
        "Couldn't download events from {url}, remote site may be experiencing "
        "connectivity problems.",
    FailureCategory.HOST_UNREACHABLE:
        "Couldn't connect to remote site at {host}.",
    FailureCategory.HOST_RESOLUTION_FAILURE:
        "Couldn't find IP address for remote site {host}. Is the URL correct?",
    FailureCategory.AUTHENTICATION_REQUIRED:
        "Couldn't import events from {url}, remote site requires authentication.",
    FailureCategory.PARSE_FAILURE:
        "Couldn't understand the events at {url}: {reason}.",
    FailureCategory.VALIDATION_FAILURE:
        "Please fix the following: {reason}.",
}

FETCH_ERROR_CATEGORIES = [
    (AuthenticationRequiredError, FailureCategory.AUTHENTICATION_REQUIRED),
    (RemoteHttpError, FailureCategory.REMOTE_HTTP_ERROR),
    (HostResolutionError, FailureCategory.HOST_RESOLUTION_FAILURE),
    (HostUnreachableError, FailureCategory.HOST_UNREACHABLE),
]


class ErrorClassifier:
    """Pure mapping from exceptions to ClassifiedFailure values."""

    def classify(self, error: BaseException, url: str, during_parse: bool = False) -> ClassifiedFailure:
        """
        Classify an exception raised while importing a URL.

        The message never contains the exception text, only the URL or
        host and, for parse and validation failures, a fixed reason.

        Args:
            error: Exception raised by a pipeline stage
            url: URL being imported
            during_parse: Whether the error came from the parse stage

        Returns:
            ClassifiedFailure
        """
        if isinstance(error, SourceValidationError):
            return self.render(
                FailureCategory.VALIDATION_FAILURE,
                url,
                reason=str(error),
                field_errors=error.errors
            )
        if isinstance(error, ParseError):
            return self.render(FailureCategory.PARSE_FAILURE, url, reason=error.reason)

        category = self._category_for(error)
        if category is None:
            if during_parse:
                logger.warning(f"Unexpected {type(error).__name__} while parsing {url}")
                return self.render(
                    FailureCategory.PARSE_FAILURE, url, reason='the document could not be read'
                )
            logger.warning(f"Unexpected {type(error).__name__} while fetching {url}")
            category = FailureCategory.HOST_UNREACHABLE

        return self.render(category, url)

    def render(
        self,
        category: FailureCategory,
        url: str,
        reason: str = '',
        field_errors: Optional[dict] = None
    ) -> ClassifiedFailure:
        """Render the template of a category."""
        host = urlparse(url).hostname or url
        message = TEMPLATES[category].format(url=url, host=host, reason=reason)
        return ClassifiedFailure(
            category=category,
            message=message,
            field_errors=dict(field_errors or {})
        )

    def _category_for(self, error: BaseException) -> Optional[FailureCategory]:
        if isinstance(error, FetchError):
            for error_class, category in FETCH_ERROR_CATEGORIES:
                if isinstance(error, error_class):
                    return category
            return FailureCategory.HOST_UNREACHABLE

        # Raw transport errors from callers that bypass RemoteFetcher
        if isinstance(error, socket.gaierror):
            return FailureCategory.HOST_RESOLUTION_FAILURE
        if isinstance(error, requests.HTTPError):
            status = getattr(error.response, 'status_code', None)
            if status in (401, 407):
                return FailureCategory.AUTHENTICATION_REQUIRED
            return FailureCategory.REMOTE_HTTP_ERROR
        if isinstance(error, (requests.RequestException, ConnectionError, TimeoutError)):
            return FailureCategory.HOST_UNREACHABLE
        if isinstance(error, OSError) and getattr(error, 'errno', None) is not None:
            return FailureCategory.HOST_UNREACHABLE
        return None
