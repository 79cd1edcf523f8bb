"""Run the engine server: ``python -m openbrowser.api``.

This is what the supervisor spawns.  Host and port come from settings
(``OPENBROWSER_ENGINE__HOST`` / ``OPENBROWSER_ENGINE__PORT``).
"""

from __future__ import annotations

import uvicorn

from openbrowser.logging_config import configure_logging
from openbrowser.settings import get_settings


def main() -> None:
    settings = get_settings()
    configure_logging()

    from openbrowser.api.app import create_app

    uvicorn.run(
        create_app(),
        host=settings.engine.host,
        port=settings.engine.port,
        log_level=settings.engine.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
