#!/usr/bin/env python3
"""Run the merchant relay application"""
import uvicorn

from merchant_relay.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "merchant_relay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
