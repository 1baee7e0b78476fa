#!/usr/bin/env python3
"""Scheduler runner"""
import logging
import sys
import time

from pbackup import create_context
from pbackup.config import validate_config
from pbackup.scheduler import init_scheduler, start_scheduler, stop_scheduler


if __name__ == '__main__':
    context = create_context()
    logger = logging.getLogger('pbackup')

    result = validate_config(context.config)
    for warning in result.warnings:
        logger.warning(warning)
    if not result.ok:
        for error in result.errors:
            logger.error(error)
        sys.exit(1)

    init_scheduler(context)
    start_scheduler()

    try:
        while True:
            time.sleep(60)
    except (KeyboardInterrupt, SystemExit):
        stop_scheduler()
