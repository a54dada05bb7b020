# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module builds the configured FastAPI application at import time from
``load_config()`` and starts the background retry loop with the application.

Usage:
    uvicorn inquiry_relay.server:app --host 0.0.0.0 --port 8000

Environment variables:
    INQUIRY_RELAY_CONFIG: Path to config.ini (default: config.ini), every
        option can also be set through its environment variable.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config import load_config
from .logger import configure_logging
from .pipeline import SubmissionPipeline

_config = load_config()
configure_logging(_config.log_level)

_pipeline = SubmissionPipeline(_config)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler - starts and stops the pipeline."""
    await _pipeline.start()
    yield
    await _pipeline.stop()


app = create_app(_pipeline, api_token=_config.api_token, lifespan=lifespan)
