import uvicorn

from roshnii.config import get_settings


def run() -> None:
    """Serve the API on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "roshnii.main:app",
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
