"""Configuration for the import pipeline."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class ImportSettings:
    """Explicit settings passed into the importer."""
    sources_table_name: str = 'import-sources'
    events_table_name: str = 'import-events'
    log_level: str = 'INFO'
    fetch_timeout_seconds: int = 30
    maximum_events_to_display_in_flash: int = 5

    def __post_init__(self):
        if self.maximum_events_to_display_in_flash < 0:
            raise ValueError('MAXIMUM_EVENTS_TO_DISPLAY_IN_FLASH must be >= 0')
        if self.fetch_timeout_seconds <= 0:
            raise ValueError('TIMEOUT_SECONDS must be > 0')

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ImportSettings':
        """
        Read settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            ImportSettings

        Raises:
            ValueError: If a numeric variable is not a valid integer or out of range
        """
        environ = os.environ if environ is None else environ
        return cls(
            sources_table_name=environ.get('SOURCES_TABLE_NAME', cls.sources_table_name),
            events_table_name=environ.get('EVENTS_TABLE_NAME', cls.events_table_name),
            log_level=environ.get('LOG_LEVEL', cls.log_level),
            fetch_timeout_seconds=int(environ.get('TIMEOUT_SECONDS', '30')),
            maximum_events_to_display_in_flash=int(
                environ.get('MAXIMUM_EVENTS_TO_DISPLAY_IN_FLASH', '5')
            )
        )
