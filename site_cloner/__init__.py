"""
Site Cloner - clones websites into build-tool shaped offline copies.

This package crawls a site, classifies and downloads every referenced asset,
lays the files out the way the site's build tool would, and tracks each clone
as a resumable session with live progress events.
"""

__version__ = "1.0.0"
__author__ = "Site Cloner Team"
