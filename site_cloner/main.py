#!/usr/bin/env python3
"""
Site Cloner - clones websites into build-tool shaped offline copies.

Crawls a site, detects the build tool that produced it, downloads every
asset into that tool's directory layout and rewrites references so the copy
runs locally. Interrupted clones can be resumed.

Usage:
    python -m site_cloner.main --url https://example.com --output ./cloned --depth 3
    python -m site_cloner.main --resume 3f2b...-... --output ./cloned
"""

import argparse
import dataclasses
import logging
import sys

from site_cloner.crawler.models import ALL_ASSET_TYPES, CrawlOptions
from site_cloner.session.events import Event, EventType
from site_cloner.session.models import SessionError, SessionStatus
from site_cloner.session.service import CloneService
from site_cloner.utils.config import ClonerConfig
from site_cloner.utils.log import (
    create_progress,
    setup_logger,
    print_status,
    print_success,
    print_error,
    print_info,
    print_warning
)


def parse_arguments() -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog='site_cloner',
        description='Clone websites into build-tool shaped offline copies',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s --url https://example.com --output ./cloned
    %(prog)s --url https://example.com --depth 2 --include image,stylesheet,javascript
    %(prog)s --url https://example.com --optimize-images --service-worker
    %(prog)s --resume 0d4c6a7e-7a43-4c8e-9f55-3c1d2b9a8e10
        """
    )

    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        '--url', '-u',
        type=str,
        help='URL of the website to clone (e.g., https://example.com)'
    )
    target.add_argument(
        '--resume', '-r',
        type=str,
        metavar='SESSION_ID',
        help='Resume an interrupted session'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Output root holding one directory per session (default: ./cloned)'
    )

    parser.add_argument(
        '--depth', '-d',
        type=int,
        default=None,
        help='Maximum crawl depth (default: 3)'
    )

    parser.add_argument(
        '--max-pages', '-m',
        type=int,
        default=None,
        help='Maximum number of pages to crawl (default: 200)'
    )

    parser.add_argument(
        '--include',
        type=str,
        default=None,
        help='Comma-separated asset types to download (default: all)'
    )

    parser.add_argument(
        '--export',
        type=str,
        default='',
        help='Comma-separated export formats recorded in the manifest (zip,docker,vscode)'
    )

    parser.add_argument(
        '--optimize-images',
        action='store_true',
        help='Recompress PNG and JPEG files after downloading'
    )

    parser.add_argument(
        '--service-worker',
        action='store_true',
        help='Generate a service worker precaching the clone'
    )

    parser.add_argument(
        '--render-js',
        action='store_true',
        help='Render pages with a headless browser before extracting assets'
    )

    parser.add_argument(
        '--allow-host',
        action='append',
        default=None,
        help='Only download cross-origin assets from this host (repeatable)'
    )

    parser.add_argument(
        '--no-block-tracking',
        action='store_true',
        help='Also download from analytics and social hosts'
    )

    parser.add_argument(
        '--concurrency', '-c',
        type=int,
        default=None,
        help='Download workers per session (default: 5)'
    )

    parser.add_argument(
        '--timeout',
        type=float,
        default=None,
        help='Session time limit in seconds (default: 300)'
    )

    parser.add_argument(
        '--env-file',
        type=str,
        default=None,
        help='Read CLONER_* settings from this .env file'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress output except errors'
    )

    return parser.parse_args()


def validate_url(url: str) -> str:
    """
    Validate and normalize the input URL.

    Raises:
        ValueError: If URL is invalid
    """
    if not url.startswith(('http://', 'https://')):
        url = 'https://' + url

    from urllib.parse import urlparse
    parsed = urlparse(url)

    if not parsed.netloc:
        raise ValueError(f"Invalid URL: {url}")

    return url


def build_config(args: argparse.Namespace) -> ClonerConfig:
    config = ClonerConfig.from_env(args.env_file)
    changes = {}
    if args.output:
        changes['output_root'] = args.output
        changes['sessions_file'] = None
    if args.concurrency is not None:
        changes['download_concurrency'] = args.concurrency
    if args.timeout is not None:
        changes['session_timeout_seconds'] = args.timeout
    return dataclasses.replace(config, **changes) if changes else config


def build_options(args: argparse.Namespace, config: ClonerConfig) -> CrawlOptions:
    include = (
        [value.strip() for value in args.include.split(',') if value.strip()]
        if args.include else [t.value for t in ALL_ASSET_TYPES]
    )
    depth = args.depth if args.depth is not None else config.default_depth
    if depth > config.max_depth:
        raise ValueError(f"Crawl depth must be between 1 and {config.max_depth}")

    return CrawlOptions(
        depth=depth,
        include_assets=include,
        optimize_images=args.optimize_images,
        generate_service_worker=args.service_worker,
        export_formats=[value.strip() for value in args.export.split(',') if value.strip()],
        max_pages=args.max_pages if args.max_pages is not None else config.max_pages,
        render_javascript=args.render_js,
        allowed_asset_hosts=args.allow_host,
        block_tracking=not args.no_block_tracking,
    )


def print_banner() -> None:
    """Print the application banner."""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║                       SITE CLONER v1.0                        ║
║          Build-tool aware website cloning and recovery        ║
╚═══════════════════════════════════════════════════════════════╝
    """
    print_status(banner, "bold cyan")


def print_summary(session, result) -> None:
    """
    Print the session summary.

    Args:
        session: Final Session record
        result: CloningResult of the last execution, may be None
    """
    print("\n" + "=" * 60)
    print_success("CLONE SUMMARY")
    print("=" * 60)
    print(f"  Session:           {session.id}")
    print(f"  Status:            {session.status.value}")
    print(f"  Pages visited:     {session.pages_visited}")
    print(f"  Assets downloaded: {session.asset_count}")

    if result is not None:
        print(f"  Assets failed:     {result.assets_failed}")
        print(f"  Build tool:        {result.build_tool}")
        print(f"  Duration:          {result.duration_seconds:.1f} seconds")

    if session.error:
        print(f"  Message:           {session.error}")

    print("=" * 60 + "\n")


def main() -> int:
    """
    Main entry point for the site cloner.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_arguments()

    log_level = logging.DEBUG if args.verbose else (logging.WARNING if args.quiet else logging.INFO)
    setup_logger(level=log_level)

    if not args.quiet:
        print_banner()

    try:
        config = build_config(args)
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        return 1

    service = CloneService(config).start()
    session_id = None

    try:
        with create_progress() as progress:
            task = progress.add_task("Cloning", total=100, visible=not args.quiet)
            current = {'id': None}

            def on_event(event: Event):
                if event.session_id != current['id']:
                    return
                if event.type in (EventType.PROGRESS_UPDATE, EventType.STATUS_UPDATE):
                    progress.update(
                        task,
                        completed=event.payload.get('progress', 0),
                        description=event.payload.get('status', 'crawling').capitalize()
                    )

            service.bus.subscribe(on_event)

            if args.resume:
                current['id'] = args.resume
                session = service.resume(args.resume)
                print_info(f"Resuming {session.url} from {session.progress:.0f}%")
            else:
                url = validate_url(args.url)
                options = build_options(args, config)
                if not args.quiet:
                    print_info(f"Target URL: {url}")
                    print_info(f"Output root: {config.output_root}")
                    print_info(f"Depth: {options.depth}, Max pages: {options.max_pages}")
                session = service.submit(url, options)
                current['id'] = session.id

            session_id = session.id
            try:
                result = service.wait(session_id)
            except KeyboardInterrupt:
                print_warning("\nPausing session...")
                service.pause(session_id)
                result = service.result(session_id)

        session = service.store.get(session_id)
        if not args.quiet:
            print_summary(session, result)

        if session.status is SessionStatus.COMPLETED:
            print_success(f"Website cloned to: {session.output_dir}")
            return 0
        if session.status is SessionStatus.INTERRUPTED:
            print_info(f"Resume later with: --resume {session_id}")
            return 1

        print_error(f"Clone ended with status {session.status.value}: {session.error}")
        return 1

    except SessionError as e:
        print_error(f"Session error: {e}")
        return 1
    except ValueError as e:
        print_error(f"Invalid input: {e}")
        return 1
    except Exception as e:
        print_error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        service.shutdown()


def run() -> None:
    """Entry point wrapper for running as module."""
    sys.exit(main())


if __name__ == '__main__':
    run()
