"""
Run the Lifeline API server.

Usage:
    python -m lifeline
"""

import uvicorn

from lifeline.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "lifeline.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
