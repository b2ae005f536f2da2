#!/usr/bin/env python3
"""Entry point for the Startup Guard application."""

import argparse
import asyncio

from startup_guard.main import StartupGuardApp, configure_logging, main


def parse_args():
    parser = argparse.ArgumentParser(description="Startup validation, recovery and crash analytics service")
    parser.add_argument("command", nargs="?", default="serve", choices=["serve", "analyze"],
                        help="serve: run the service (default); analyze: print a crash analysis and exit")
    parser.add_argument("--hours", type=int, default=24, help="crash log window for analyze")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    configure_logging(args.log_level)
    if args.command == "analyze":
        print(StartupGuardApp().analyze(hours_back=args.hours))
    else:
        asyncio.run(main())
