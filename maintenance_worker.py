"""
Start an RQ worker for background library maintenance (statistics refreshes
and event retention sweeps).

Usage:
    python3 maintenance_worker.py --redis-url redis://localhost:6379/0
"""

import argparse
import os

from librarium.config import LibraryConfig, configure_logging
from librarium.library import MaintenanceQueue


def main():
    config = LibraryConfig.from_env()
    parser = argparse.ArgumentParser()
    parser.add_argument("--redis-url", default=config.redis_url, help="Redis connection URL")
    parser.add_argument("--queue", default=config.queue_name, help="Queue name")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level")
    args = parser.parse_args()

    configure_logging(args.log_level)
    MaintenanceQueue(args.redis_url, args.queue).work()


if __name__ == "__main__":
    main()
