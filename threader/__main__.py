"""Command line entry point.

    python -m threader https://mastodon.social/@user/123456 --more 2
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import List, Optional

from threader.config.settings import get_settings
from threader.services.errors import ParseError, ThreaderError
from threader.services.platforms.registry import create_default_registry
from threader.utils.logging import configure_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="threader",
        description="Print an author's thread around a Mastodon or Bluesky post as JSON.",
    )
    parser.add_argument("url", help="Status / post URL")
    parser.add_argument(
        "--more",
        type=int,
        default=0,
        help="Continue the thread up to N more times while more posts are available",
    )
    parser.add_argument("--context-requests", type=int, default=None)
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    registry = create_default_registry(get_settings())
    try:
        adapter = registry.get_adapter_for_url(args.url)
        if adapter is None:
            print(f"Unsupported URL: {args.url}", file=sys.stderr)
            return 2

        result = await adapter.fetch_thread(
            args.url, initial_context_requests=args.context_requests
        )
        for _ in range(max(0, args.more)):
            if not result.has_more:
                break
            if result.rate_limited_until is not None:
                delay = (result.rate_limited_until - datetime.now(timezone.utc)).total_seconds()
                await asyncio.sleep(max(0.0, delay))
            result = await adapter.continue_thread(
                result.thread, max_context_requests=args.context_requests
            )

        print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return 0
    except ParseError as e:
        print(str(e), file=sys.stderr)
        return 2
    except ThreaderError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        await registry.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging("DEBUG" if args.verbose else get_settings().LOG_LEVEL)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
