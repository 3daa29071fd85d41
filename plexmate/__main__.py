import uvicorn

from plexmate.config import get_settings
from plexmate.core.logging import LOGGING_CONFIG, setup_logging


def main():
    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(
        "plexmate.app:app",
        host="0.0.0.0",
        port=settings.webhook_port,
        log_config=LOGGING_CONFIG,
    )


if __name__ == "__main__":
    main()
