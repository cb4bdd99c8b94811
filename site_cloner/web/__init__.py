"""
Web module for the site cloner.

Provides a Flask and Socket.IO interface for starting and recovering clone
sessions.
"""

from .app import create_app

__all__ = ["create_app"]
