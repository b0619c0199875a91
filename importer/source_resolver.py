"""Resolution of submitted URLs to source identities."""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse, urlunparse

from processor.models import Source
from storage.source_repository import SourceRepository

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {'http': '80', 'https': '443'}
PROTECTED_FIELDS = {'url', 'organization_id', 'source_id', 'created_at', 'updated_at', 'stored_url'}


def normalize_url(raw_url: Optional[str]) -> str:
    """Normalization used so equivalent submissions share one source."""
    if not raw_url or not raw_url.strip():
        return ''

    parsed = urlparse(raw_url.strip())
    scheme = parsed.scheme.lower()
    if scheme == 'webcal':
        scheme = 'http'

    # only the host is case-insensitive; userinfo is kept as submitted
    userinfo, _, hostport = parsed.netloc.rpartition('@')
    host, port = hostport, ''
    if hostport.startswith('['):
        host, _, rest = hostport.partition(']')
        host += ']'
        port = rest[1:] if rest.startswith(':') else ''
    elif ':' in hostport:
        host, port = hostport.rsplit(':', maxsplit=1)
    netloc = host.lower()
    if port and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    path = parsed.path or '/'
    if path != '/' and path.endswith('/'):
        path = path[:-1]

    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ''))


class SourceResolver:
    """Maps an organization and URL to an existing or new source."""

    def __init__(self, source_repository: SourceRepository):
        self.source_repository = source_repository

    def resolve(
        self,
        organization_id: str,
        url: str,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Source:
        """
        Find the source for a URL, or build a new unsaved one.

        Overrides are applied in memory only; nothing is persisted.

        Args:
            organization_id: Owning organization
            url: Submitted URL
            overrides: Attributes to set on the source

        Returns:
            Source with overrides applied
        """
        normalized = normalize_url(url)
        source = self.source_repository.get(organization_id, normalized)

        if source is None:
            logger.info(f"No source for {normalized!r} in {organization_id}, building new one")
            source = Source(organization_id=organization_id, url=normalized)
        else:
            logger.info(f"Resolved {normalized!r} to existing source {source.source_id}")

        self.apply_overrides(source, overrides or {})
        return source

    def apply_overrides(self, source: Source, overrides: Dict[str, Any]) -> None:
        """
        Set caller-supplied attributes on a source.

        Identity fields are ignored. Keys other than title and metadata
        are kept as display metadata.

        Args:
            source: Source to modify
            overrides: Attribute values keyed by name
        """
        for key, value in overrides.items():
            if key in PROTECTED_FIELDS:
                continue
            if key == 'title':
                source.title = '' if value is None else str(value)
            elif key == 'metadata':
                if isinstance(value, dict):
                    source.metadata = {**source.metadata, **value}
                else:
                    source.metadata = value
            elif isinstance(source.metadata, dict):
                source.metadata = {**source.metadata, key: value}
