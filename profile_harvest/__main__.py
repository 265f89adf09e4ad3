"""Run the API server: ``python -m profile_harvest``."""

import uvicorn

from profile_harvest.config import settings


def main():
    uvicorn.run(
        "profile_harvest.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
        timeout_graceful_shutdown=int(settings.ENGINE_SHUTDOWN_GRACE_SECONDS) + 5,
    )


if __name__ == "__main__":
    main()
