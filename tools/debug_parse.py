"""Run a URL through the strategy registry and print the result JSON.

Usage:
    python tools/debug_parse.py https://example.com/post
    python tools/debug_parse.py https://example.com/post --html saved.html
    python tools/debug_parse.py https://youtu.be/abc --strategy-only
"""

import argparse
import json
import sys
from pathlib import Path

from linkparse.services.exceptions import InvalidURLError
from linkparse.services.parser import parse_url
from linkparse.services.strategies.registry import select_strategy
from linkparse.utils.logging_config import setup_logging
from linkparse.utils.urls import validate_url


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("url", help="URL to parse")
    parser.add_argument("--html", type=Path, help="Use this file instead of fetching the URL")
    parser.add_argument(
        "--strategy-only",
        action="store_true",
        help="Only print which strategy would handle the URL",
    )
    parser.add_argument("--deadline", type=float, default=None, help="Deadline in seconds")
    parser.add_argument("--client", default="debug-cli", help="Client identity for rate limits")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(stream=sys.stderr)

    try:
        url = validate_url(args.url)
    except InvalidURLError as exc:
        print(f"Invalid URL: {exc}", file=sys.stderr)
        return 2

    if args.strategy_only:
        print(select_strategy(url).name)
        return 0

    html = args.html.read_text(encoding="utf-8", errors="replace") if args.html else None
    result = parse_url(
        url, html=html, client_identity=args.client, deadline_seconds=args.deadline
    )
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
