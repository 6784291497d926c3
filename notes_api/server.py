import logging

import uvicorn

from notes_api.config import get_settings


def main() -> None:
    """Run the notes API with uvicorn on the configured host and port."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info("Listening for requests on port %s", settings.port)
    uvicorn.run(
        "notes_api.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
