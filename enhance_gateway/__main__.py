#!/usr/bin/env python3
"""
Run the gateway with uvicorn.

    python -m enhance_gateway
"""

import uvicorn

from enhance_gateway.core.config.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "enhance_gateway.application.app:create_app",
        factory=True,
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
