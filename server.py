#!/usr/bin/env python3
"""Run the dashboard API with its in-process sync scheduler under uvicorn."""

import logging
import os

import uvicorn

TRUTHY = {"1", "true", "yes", "on"}


def main():
    log_level = os.environ.get("LOG_LEVEL", "info").lower()
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # The scheduler and the sync-in-progress flag are process state, so a single worker.
    uvicorn.run(
        "app:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
        reload=os.environ.get("RELOAD", "").strip().lower() in TRUTHY,
        workers=1,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
