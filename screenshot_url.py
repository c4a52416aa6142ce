#!/usr/bin/env python3
"""
Quick script to screenshot a single URL
"""

import sys
from pathlib import Path

from screenshot_batch import CaptureConfig, CaptureError, take_screenshot

OUTPUT_DIR = Path("screenshots")
TIMEOUT_SECONDS = 60


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: python screenshot_url.py <URL>")
        return 1

    url = argv[0]
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    config = CaptureConfig.create(OUTPUT_DIR, timeout=TIMEOUT_SECONDS)

    print(f"Screenshotting: {url}")
    try:
        result = take_screenshot(url, config)
    except CaptureError as e:
        print(f"\n✗ Failed to take screenshot: {e}")
        return 1

    print(f"\n✓ Screenshot saved: {result}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
