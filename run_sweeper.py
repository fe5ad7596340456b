#!/usr/bin/env python3
"""
Run script for the daily invariant sweep.

Usage:
    python run_sweeper.py           # Start the daily scheduler (Ctrl+C to stop)
    python run_sweeper.py --once    # Run one sweep now and print the report
"""

import argparse
import json
import logging
import os
import sys
import threading

# Configure logging early; fpdf2 and fontTools are chatty at DEBUG
logging.getLogger("fontTools").setLevel(logging.WARNING)
logging.getLogger("fpdf").setLevel(logging.WARNING)

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def main():
    """Run one sweep or start the daily scheduler."""
    from src.engine import LifecycleEngine
    from src.sweeper import DailyScheduler
    from src.utils.config import get_settings

    parser = argparse.ArgumentParser(description="Daily policy & claims sweep")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    engine = LifecycleEngine.build(settings)

    if args.once:
        report = engine.sweeper.run_daily_sweep()
        print(json.dumps(report.to_dict(), indent=2))
        sys.exit(0 if report.ok else 1)

    scheduler = DailyScheduler(
        engine.sweeper.run_daily_sweep,
        hour=settings.sweep_hour,
        minute=settings.sweep_minute,
        tz=settings.sweep_timezone,
    )

    print("=" * 60)
    print("Policy & Claims Lifecycle Sweeper")
    print("=" * 60)
    print(f"Database: {settings.db_path}")
    print(f"Trigger:  {settings.sweep_hour:02d}:{settings.sweep_minute:02d} {settings.sweep_timezone}")
    print("=" * 60)

    scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        scheduler.stop(timeout=5)


if __name__ == "__main__":
    main()
