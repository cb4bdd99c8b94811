"""
Logging utilities for the site cloner.

Provides colorful CLI logging using the rich library.
"""

import logging
from typing import Dict, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn


ROOT_LOGGER = "site_cloner"

# Global console instance
console = Console()

# Logger instances cache
_loggers: Dict[str, logging.Logger] = {}


def setup_logger(
    name: str = ROOT_LOGGER,
    level: int = logging.INFO,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up and configure the package logger with rich formatting.

    Component loggers are children of this logger, so configuring it once
    (from the CLI or the web entry point) sets the level for all of them.

    Args:
        name: Logger name
        level: Logging level (default: INFO)
        log_file: Optional file path to write logs

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True
    )
    console_handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    _loggers[name] = logger
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a component logger.

    Args:
        name: Component name, e.g. "crawler" becomes "site_cloner.crawler"

    Returns:
        Logger instance
    """
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)
    return _loggers[name]


def create_progress() -> Progress:
    """Create a rich progress bar bound to the shared console."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console
    )


def print_status(message: str, style: str = "bold blue") -> None:
    """
    Print a styled status message.

    Args:
        message: Message to print
        style: Rich style string
    """
    console.print(message, style=style, markup=False)


def print_error(message: str) -> None:
    print_status(f"❌ {message}", "bold red")


def print_success(message: str) -> None:
    print_status(f"✅ {message}", "bold green")


def print_warning(message: str) -> None:
    print_status(f"⚠️ {message}", "bold yellow")


def print_info(message: str) -> None:
    print_status(f"ℹ️ {message}", "bold cyan")
