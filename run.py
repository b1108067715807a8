#!/usr/bin/env python3
"""agentlog - Agent Session Log Viewer"""
import logging

import uvicorn

from agentlog.config import Settings


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    settings = Settings.from_env()

    print(f"\n  agentlog - Agent Session Log Viewer")
    print(f"  Roots from {settings.config_path}")
    print(f"  Running at http://localhost:{settings.port}\n")

    uvicorn.run(
        "agentlog.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )

if __name__ == "__main__":
    main()
