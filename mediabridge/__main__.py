"""Module executed when running ``python -m mediabridge``."""

from __future__ import annotations

import uvicorn

from app.config import settings


def main() -> None:
    """Serve the Jellyfin-compatible API with uvicorn."""

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        proxy_headers=True,
        log_level="debug" if settings.environment == "development" else "info",
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
