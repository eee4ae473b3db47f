# src/couponradar/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance and mounts the routers.
Engine logic lives in `couponradar.engine`; routes only translate HTTP to engine calls.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from couponradar.core.logging import configure_logging

from .routes import close_engine, router

configure_logging()


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    yield
    close_engine()


app = FastAPI(title="CouponRadar API", version="0.1.0", lifespan=_lifespan)

# The preference UI runs on another local port during development.
# - COUPONRADAR_CORS_ORIGINS="http://localhost:3000,http://127.0.0.1:3000"
# - COUPONRADAR_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
cors_origins = [s.strip() for s in os.getenv("COUPONRADAR_CORS_ORIGINS", "").split(",") if s.strip()]
cors_allow_local = os.getenv("COUPONRADAR_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
cors_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if cors_allow_local and not cors_origins else ""
if cors_origins or cors_origin_regex:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_origin_regex=cors_origin_regex or None,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(router)


