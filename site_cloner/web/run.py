#!/usr/bin/env python3
"""
Entry point for running the Site Cloner web service.

Usage:
    python -m site_cloner.web.run --host 0.0.0.0 --port 5000
"""

import argparse
import logging

from site_cloner.utils.config import ClonerConfig
from site_cloner.utils.log import setup_logger
from site_cloner.web.app import run_app


def main():
    """Parse arguments and run the web application."""
    parser = argparse.ArgumentParser(
        description='Run the Site Cloner web service'
    )
    parser.add_argument(
        '--host',
        default='127.0.0.1',
        help='Host to bind to (default: 127.0.0.1)'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        default=5000,
        help='Port to listen on (default: 5000)'
    )
    parser.add_argument(
        '--env-file',
        default=None,
        help='Read CLONER_* settings from this .env file'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug mode'
    )

    args = parser.parse_args()

    setup_logger(level=logging.DEBUG if args.debug else logging.INFO)
    config = ClonerConfig.from_env(args.env_file)

    print(f"Starting Site Cloner at http://{args.host}:{args.port}")
    run_app(host=args.host, port=args.port, debug=args.debug, config=config)


if __name__ == '__main__':
    main()
