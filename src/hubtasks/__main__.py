"""Serve the HTTP API with uvicorn."""

from __future__ import annotations

import uvicorn

from .config import AppConfig


def main() -> None:
    config = AppConfig.build_default()
    uvicorn.run(
        "hubtasks.main:create_app",
        factory=True,
        host=config.http_host,
        port=config.http_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
