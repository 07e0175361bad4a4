"""
main.py: Server launcher and entry point.

Run this file to start the inventory engine API:

    python main.py

Host, port and reload come from ``HOSTEL_HOST``, ``HOSTEL_PORT`` and
``HOSTEL_RELOAD``. See app.py for service wiring and the startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import uvicorn

from hostel_inventory.utils.config import get_settings
from hostel_inventory.utils.logger import configure_logging


def main() -> None:
    """Start the hostel inventory API server."""
    settings = get_settings()
    configure_logging()
    base_url = f"http://{settings.server_host}:{settings.server_port}"

    print("=" * 60)
    print(f"  {settings.app_name} v{settings.app_version}")
    print("=" * 60)
    print(f"  Server    : {base_url}")
    print(f"  API docs  : {base_url}/docs")
    print(f"  Calendar  : {base_url}/ical/rooms.ics")
    print(f"  Database  : {settings.database_path}")
    print(f"  Scheduler : {'on' if settings.scheduler_enabled else 'off'}")
    print("=" * 60)

    uvicorn.run(
        "app:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.server_reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
