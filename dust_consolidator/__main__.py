"""Run the API server: ``python -m dust_consolidator``."""

import uvicorn

from dust_consolidator.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "dust_consolidator.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
