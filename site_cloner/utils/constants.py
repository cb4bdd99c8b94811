"""
Shared constants for the site cloner.

Contains common configuration values used across multiple modules.
"""

# Default user agent string for all HTTP requests
# Used by both the browser renderer and the fetcher
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# Default request timeout in seconds
DEFAULT_TIMEOUT = 30

# Default page load timeout in milliseconds (for Playwright)
DEFAULT_PAGE_TIMEOUT = 30000

# Per-session download workers
DEFAULT_CONCURRENCY = 5

# Download slots shared by every session of the process
DEFAULT_GLOBAL_DOWNLOAD_LIMIT = 20

# Crawl depth used when a request does not specify one
DEFAULT_DEPTH = 3

# Upper bound accepted for a request's crawl depth
DEFAULT_MAX_DEPTH = 5

# Maximum pages to crawl by default
DEFAULT_MAX_PAGES = 200

# Wall-clock ceiling for one session execution, in seconds
DEFAULT_SESSION_TIMEOUT = 300

# How long finished or interrupted sessions stay recoverable, in seconds
DEFAULT_RETENTION = 3600

# Events kept per session for activity replay
DEFAULT_HISTORY_SIZE = 200

# Asset events between two writes of the session registry
DEFAULT_PERSIST_EVERY = 10

# Root directory holding one sub-directory per session
DEFAULT_OUTPUT_ROOT = "./cloned"

# Bytes of every response handed to the classifier for sniffing
SNIFF_BYTES = 64

# Name of the crawl snapshot written to each session's output root
STATE_FILENAME = "session-state.json"

# Analytics and social hosts that are never downloaded
TRACKING_DOMAINS = (
    "google-analytics.com",
    "googletagmanager.com",
    "facebook.com",
    "twitter.com",
    "linkedin.com",
    "mixpanel.com",
    "amplitude.com",
    "segment.com",
    "hotjar.com",
)
