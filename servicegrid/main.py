"""ServiceGrid entrypoint."""

import uvicorn

from servicegrid.config.settings import get_settings


def cli() -> None:
    """Serve the edge functions app; HOST, PORT and RELOAD come from settings."""
    settings = get_settings()
    uvicorn.run(
        "servicegrid.web.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )


if __name__ == "__main__":
    cli()
