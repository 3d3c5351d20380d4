#!/usr/bin/env python3
"""
Standalone scheduler process for the expiry sweep.

Use this when the API is not running its own background heartbeat.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from corpreg.core import dao, service
from corpreg.core.config import get_sweep_interval, is_sweep_enabled
from corpreg.core.heartbeat import start, stop
from corpreg.util.logging import logger


def main():
    """Main entry point for heartbeat script."""
    try:
        if not is_sweep_enabled():
            print("Heartbeat requires EXPIRY_SWEEP_ENABLED=true")
            sys.exit(1)

        dao.ensure_schema()
        service.register_sweep_task()
        logger.info(f"Expiry sweep scheduled every {get_sweep_interval()} seconds")

        start()

    except KeyboardInterrupt:
        stop()
    except Exception as e:
        logger.error(f"Critical error: {e}")
        stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
