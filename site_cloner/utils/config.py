"""
Runtime configuration for the site cloner.

Values come from ``CLONER_*`` environment variables, optionally loaded from a
``.env`` file, with the defaults in :mod:`site_cloner.utils.constants`.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_USER_AGENT,
    DEFAULT_TIMEOUT,
    DEFAULT_CONCURRENCY,
    DEFAULT_GLOBAL_DOWNLOAD_LIMIT,
    DEFAULT_DEPTH,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PAGES,
    DEFAULT_SESSION_TIMEOUT,
    DEFAULT_RETENTION,
    DEFAULT_HISTORY_SIZE,
    DEFAULT_PERSIST_EVERY,
    DEFAULT_OUTPUT_ROOT,
)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class ClonerConfig:
    """Process-wide settings shared by the service, runners and web layer."""

    output_root: str = DEFAULT_OUTPUT_ROOT
    sessions_file: Optional[str] = None
    download_concurrency: int = DEFAULT_CONCURRENCY
    global_download_limit: int = DEFAULT_GLOBAL_DOWNLOAD_LIMIT
    session_timeout_seconds: float = DEFAULT_SESSION_TIMEOUT
    retention_seconds: float = DEFAULT_RETENTION
    default_depth: int = DEFAULT_DEPTH
    max_depth: int = DEFAULT_MAX_DEPTH
    max_pages: int = DEFAULT_MAX_PAGES
    request_timeout: int = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    history_size: int = DEFAULT_HISTORY_SIZE
    persist_every: int = DEFAULT_PERSIST_EVERY
    production: bool = False

    def __post_init__(self):
        self.output_root = os.path.abspath(self.output_root)
        if self.sessions_file is None:
            self.sessions_file = os.path.join(self.output_root, "sessions.json")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ClonerConfig":
        """
        Build a configuration from the environment.

        Args:
            env_file: Optional path of a .env file; the default lookup is used otherwise

        Returns:
            ClonerConfig instance
        """
        load_dotenv(env_file)

        env = os.environ
        kwargs = {}

        casts = {
            'CLONER_OUTPUT_ROOT': ('output_root', str),
            'CLONER_SESSIONS_FILE': ('sessions_file', str),
            'CLONER_DOWNLOAD_CONCURRENCY': ('download_concurrency', int),
            'CLONER_GLOBAL_DOWNLOAD_LIMIT': ('global_download_limit', int),
            'CLONER_SESSION_TIMEOUT': ('session_timeout_seconds', float),
            'CLONER_RETENTION': ('retention_seconds', float),
            'CLONER_DEFAULT_DEPTH': ('default_depth', int),
            'CLONER_MAX_DEPTH': ('max_depth', int),
            'CLONER_MAX_PAGES': ('max_pages', int),
            'CLONER_REQUEST_TIMEOUT': ('request_timeout', int),
            'CLONER_USER_AGENT': ('user_agent', str),
            'CLONER_HISTORY_SIZE': ('history_size', int),
            'CLONER_PERSIST_EVERY': ('persist_every', int),
            'CLONER_PRODUCTION': ('production', _env_bool),
        }

        for variable, (attribute, cast) in casts.items():
            value = env.get(variable)
            if value is None or value == '':
                continue
            try:
                kwargs[attribute] = cast(value)
            except ValueError as e:
                raise ValueError(f"Invalid value for {variable}: {value!r}") from e

        return cls(**kwargs)

    def session_dir(self, session_id: str) -> str:
        """Output root of one session; sessions never share a directory."""
        return os.path.join(self.output_root, session_id)
