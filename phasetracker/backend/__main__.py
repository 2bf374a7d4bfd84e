"""Run the phase tracker API with uvicorn."""

from __future__ import annotations

import uvicorn

from phasetracker.backend.api import create_app
from phasetracker.backend.config import configure_logging, load_settings
from phasetracker.backend.store import create_store


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    store = create_store(settings.database_url, settings.server_salt)
    uvicorn.run(create_app(store=store, settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
