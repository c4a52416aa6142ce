#!/usr/bin/env python3
"""
Batch Screenshot Tool
Captures a viewport screenshot of every URL in a list using a fixed pool of
worker threads. Each URL gets its own browser session and its own deadline;
a failure on one URL is logged and never stops the rest of the batch.
"""

import argparse
import logging
import os
import queue
import re
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from browser_session import open_session

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_THREADS = 4
FILE_MODE = 0o644

_NON_WORD = re.compile(r'\W+', re.ASCII)
_STOP = object()


class ScreenshotError(Exception):
    """Base class for errors raised by this tool."""


class ConfigError(ScreenshotError):
    """Invalid input detected before any capture starts."""


class CaptureError(ScreenshotError):
    """A single URL could not be captured. Never fatal for the batch."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class CaptureTimeout(CaptureError):
    def __init__(self, url: str, timeout: Optional[float]):
        limit = f"{timeout:g}s" if timeout is not None else "the browser time limit"
        super().__init__(url, f"timeout: page load exceeded {limit} for {url}")
        self.timeout = timeout


class CaptureFailure(CaptureError):
    def __init__(self, url: str, cause: BaseException):
        super().__init__(url, f"failed to capture screenshot for {url}: {cause}")


class PersistFailure(CaptureError):
    def __init__(self, url: str, path: Path, cause: BaseException):
        super().__init__(url, f"failed to save screenshot for {url} to {path}: {cause}")
        self.path = path


class DeadlineExceeded(Exception):
    pass


@dataclass(frozen=True)
class CaptureConfig:
    """Settings shared read-only by every worker for the whole run."""

    output_dir: Path
    proxy: Optional[str] = None
    timeout: Optional[float] = None
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def create(
        cls,
        output_dir,
        proxy: Optional[str] = None,
        timeout: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "CaptureConfig":
        """Build a config, treating an empty proxy or a timeout <= 0 as unset."""
        return cls(
            output_dir=Path(output_dir),
            proxy=proxy or None,
            timeout=timeout if timeout and timeout > 0 else None,
            headers=MappingProxyType(dict(headers or {})),
        )


class Deadline:
    """Per-task time budget. ``None`` seconds means no deadline."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    def remaining_ms(self) -> float:
        """
        Milliseconds left, in Playwright's convention (0 = no limit).

        Raises:
            DeadlineExceeded: if the budget is already spent
        """
        if self._expires_at is None:
            return 0
        remaining = self._expires_at - time.monotonic()
        if remaining <= 0:
            raise DeadlineExceeded()
        return max(1.0, remaining * 1000)


def parse_headers(header_flag: Optional[str]) -> Dict[str, str]:
    """
    Parse ``key:value`` pairs separated by commas into a header dict.

    Pairs without a colon are skipped. Later duplicates win.
    """
    headers = {}
    if not header_flag:
        return headers
    for pair in header_flag.split(','):
        key, sep, value = pair.partition(':')
        if sep:
            headers[key.strip()] = value.strip()
    return headers


def sanitize_filename(value: str) -> str:
    """
    Convert a URL to a safe filename stem.

    Every run of characters other than ASCII letters, digits and
    underscore becomes a single underscore.
    """
    return _NON_WORD.sub('_', value)


def screenshot_filename(url: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    return f"{sanitize_filename(url)}_{when.strftime('%Y%m%d_%H%M%S')}.png"


def _write_image(path: Path, image: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(image)
    except OSError:
        # Only reached after os.open succeeded; drop the partial file.
        try:
            path.unlink()
        except OSError:
            pass
        raise


def take_screenshot(
    url: str,
    config: CaptureConfig,
    session_factory: Optional[Callable] = None,
) -> Path:
    """
    Render one URL in a fresh browser session and save its screenshot.

    Args:
        url: URL to screenshot
        config: Shared capture settings
        session_factory: Callable ``(proxy, timeout_ms) -> session``;
            defaults to a Playwright Chromium session

    Returns:
        Path of the written PNG

    Raises:
        CaptureTimeout: the deadline expired before the image was captured
        CaptureFailure: navigation or rendering failed
        PersistFailure: the image could not be written
    """
    factory = session_factory or open_session
    deadline = Deadline(config.timeout)

    try:
        session = factory(config.proxy, deadline.remaining_ms())
        try:
            session.set_headers(config.headers)
            session.navigate(url, deadline.remaining_ms())
            session.wait_until_ready(deadline.remaining_ms())
            image = session.screenshot(deadline.remaining_ms())
        finally:
            session.close()
    except (PlaywrightTimeoutError, DeadlineExceeded):
        raise CaptureTimeout(url, config.timeout) from None
    except Exception as e:
        raise CaptureFailure(url, e) from e

    screenshot_path = config.output_dir / screenshot_filename(url)
    try:
        _write_image(screenshot_path, image)
    except OSError as e:
        raise PersistFailure(url, screenshot_path, e) from e
    return screenshot_path


def capture_url(
    url: str,
    config: CaptureConfig,
    session_factory: Optional[Callable] = None,
) -> bool:
    """Capture one URL and log the outcome. Never raises."""
    logger.info("Processing URL: %s", url)
    try:
        path = take_screenshot(url, config, session_factory)
    except CaptureError as e:
        logger.error("Error processing %s: %s", url, e)
        return False
    except Exception:
        logger.exception("Unexpected error processing %s", url)
        return False
    logger.info("Screenshot saved: %s", path)
    return True


def _worker(url_queue: "queue.Queue", config: CaptureConfig, session_factory) -> None:
    saved = failed = 0
    logger.debug("Worker started")
    while True:
        url = url_queue.get()
        if url is _STOP:
            break
        if capture_url(url, config, session_factory):
            saved += 1
        else:
            failed += 1
    logger.debug("Worker exiting (%d saved, %d failed)", saved, failed)


def process_urls(
    urls: Iterable[str],
    config: CaptureConfig,
    threads: int = DEFAULT_THREADS,
    session_factory: Optional[Callable] = None,
) -> None:
    """
    Screenshot every URL using ``threads`` worker threads.

    Blocks until all workers have exited, so no file is written after this
    returns. Each URL is captured at most once; completion order across
    workers is not defined.
    """
    if threads < 1:
        logger.warning("Invalid thread count %s, using 1", threads)
        threads = 1

    url_queue = queue.Queue(maxsize=threads)
    workers = [
        threading.Thread(
            target=_worker,
            args=(url_queue, config, session_factory),
            name=f"capture-worker-{i}",
            daemon=True,
        )
        for i in range(1, threads + 1)
    ]
    for worker in workers:
        worker.start()

    for url in urls:
        url_queue.put(url)
    for _ in workers:
        url_queue.put(_STOP)

    for worker in workers:
        worker.join()


def read_url_file(path) -> List[str]:
    """Read one URL per line, skipping blank lines."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return [line.strip() for line in f if line.strip()]
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read URL file {path}: {e}") from e


def prepare_output_dir(path) -> Path:
    """Create the output directory if needed and check it is writable."""
    output_path = Path(path)
    try:
        output_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Failed to create output directory {output_path}: {e}") from e
    if not os.access(output_path, os.W_OK):
        raise ConfigError(f"Output directory is not writable: {output_path}")
    return output_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Take screenshots of a list of URLs with headless Chromium',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Screenshot a single URL
  python screenshot_batch.py -u https://example.com

  # Screenshot every URL in a file with 8 threads and a 30s timeout
  python screenshot_batch.py -f urls.txt -threads 8 -t 30 -o shots

  # Route through a proxy and send extra headers
  python screenshot_batch.py -f urls.txt -proxy http://127.0.0.1:8080 -H "X-Test: 1,Cookie: a=b"
        """
    )

    parser.add_argument('-u', dest='url', default='',
                        help='Target URL (required unless -f is provided)')
    parser.add_argument('-f', dest='url_file', default='',
                        help='File containing list of URLs (one per line)')
    parser.add_argument('-o', dest='output', default='.',
                        help='Output directory for screenshots (default: .)')
    parser.add_argument('-proxy', dest='proxy', default='',
                        help='Proxy server to use (e.g., http://127.0.0.1:8080)')
    parser.add_argument('-threads', dest='threads', type=int, default=DEFAULT_THREADS,
                        help=f'Number of worker threads (default: {DEFAULT_THREADS})')
    parser.add_argument('-t', dest='timeout', type=int, default=0,
                        help='Seconds to wait for each capture (0 for unlimited)')
    parser.add_argument('-H', dest='headers', default='',
                        help='Custom headers for browser requests (comma-separated key:value)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    if not args.url and not args.url_file:
        parser.error("You must specify either -u or -f")

    try:
        output_path = prepare_output_dir(args.output)
        urls = [args.url] if args.url else []
        if args.url_file:
            urls.extend(read_url_file(args.url_file))
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    if not urls:
        logger.warning("No URLs to process")
        return 0

    config = CaptureConfig.create(
        output_path,
        proxy=args.proxy,
        timeout=args.timeout,
        headers=parse_headers(args.headers),
    )
    logger.info("Capturing %d URL(s) with %d thread(s) into %s",
                len(urls), max(1, args.threads), output_path.absolute())

    try:
        process_urls(urls, config, threads=args.threads)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        return 130
    return 0


if __name__ == '__main__':
    sys.exit(main())
