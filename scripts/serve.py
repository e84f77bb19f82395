#!/usr/bin/env python3
"""Serve the news catalog API with background refresh.

Usage:
    python scripts/serve.py

Environment Variables:
    NEWSWIRE_NEWSAPI_KEY / NEWSWIRE_NEWSDATA_KEY: optional, enable the JSON API sources
    NEWSWIRE_REFRESH_INTERVAL_MINUTES: refresh cadence (default 10)
    NEWSWIRE_FORCE_REFRESH_ON_START: replace the catalog on the first run
    NEWSWIRE_CATALOG_BACKEND: memory or sql
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog
import uvicorn

from newswire.api.app import create_app
from newswire.config.settings import settings

logger = structlog.get_logger()


def main():
    app = create_app(config=settings)
    logger.info("api_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
