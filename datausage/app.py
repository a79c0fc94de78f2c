"""
FastAPI application entry point for the data usage API.
"""

from __future__ import annotations

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI

from datausage.config import Settings, get_settings
from datausage.routes import router


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Data Usage API", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )
    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.listen_port)


if __name__ == "__main__":
    main()
