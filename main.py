"""
main.py: Server launcher.

    python main.py

HOST, PORT and RELOAD are read from the environment. Set ADMIN_TOKEN to
require operator login, and SEED_SYNTHETIC_DATA=1 to start with demo rooms
and registrants.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import os

import uvicorn

from backend.utils.config import get_settings


HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))


def main() -> None:
    """Start the allocation API."""
    settings = get_settings()
    print("=" * 60)
    print(f"  {settings.app_name} v{settings.app_version}")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print(f"  Database : {settings.database_path}")
    print(f"  Auth     : {'admin token' if settings.admin_token else 'disabled'}")
    print("=" * 60)

    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("RELOAD", "0") == "1",
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
