#!/usr/bin/env python3
"""
PinPrompt API Setup and Run Script

Prepares a local development environment and starts the server:

1. Default the database URL, storage directory and JWT secret.
2. Make sure the project is installed.
3. Create the tables and report the database the server will use.
4. Start uvicorn with reload enabled.
"""

import asyncio
import os
import secrets
import subprocess
import sys
from pathlib import Path

PORT = 8002
REQUIRED_MODULES = ("fastapi", "sqlmodel", "aiosqlite", "jwt", "bcrypt", "uvicorn")


def prepare_environment():
    """Default the settings a local run needs"""
    print("Preparing PinPrompt environment...")

    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./pinprompt.db")
    os.environ.setdefault("ENVIRONMENT", "development")
    os.environ.setdefault("PUBLIC_BASE_URL", f"http://localhost:{PORT}")

    storage_dir = Path(os.environ.setdefault("STORAGE_DIR", "./storage"))
    for bucket in ("outputs", "avatars"):
        (storage_dir / bucket).mkdir(parents=True, exist_ok=True)

    if not os.getenv("JWT_SECRET_KEY"):
        # Sessions end on restart unless a key is configured
        os.environ["JWT_SECRET_KEY"] = secrets.token_urlsafe(32)
        print("  JWT secret generated for this run (set JWT_SECRET_KEY to keep sessions)")

    print(f"  Database URL: {os.environ['DATABASE_URL']}")
    print(f"  Storage root: {storage_dir.resolve()}")


def missing_modules():
    missing = []
    for module in REQUIRED_MODULES:
        try:
            __import__(module)
        except ImportError:
            missing.append(module)
    return missing


def ensure_installed():
    """Install the project in editable mode when an import is missing"""
    missing = missing_modules()
    if not missing:
        return True

    print(f"Missing modules: {', '.join(missing)}; installing the project...")
    try:
        subprocess.check_call([sys.executable, "-m", "pip", "install", "-e", "."])
    except subprocess.CalledProcessError:
        return False
    return not missing_modules()


async def bootstrap_database():
    # Imported late so the settings pick up prepare_environment()
    from core.database import create_db_and_tables, engine, get_database_info

    try:
        await create_db_and_tables()
        return await get_database_info()
    finally:
        await engine.dispose()


def start_server():
    import uvicorn

    print(f"Feed:          http://localhost:{PORT}/feed")
    print(f"Health check:  http://localhost:{PORT}/healthcheck")
    print(f"API docs:      http://localhost:{PORT}/docs")
    print("-" * 50)

    try:
        uvicorn.run("main:app", host="0.0.0.0", port=PORT, reload=True, log_level="info")
    except KeyboardInterrupt:
        print("\nServer stopped by user")


def main():
    os.chdir(Path(__file__).parent)
    prepare_environment()

    if not ensure_installed():
        print("Could not install dependencies")
        sys.exit(1)

    info = asyncio.run(bootstrap_database())
    if not info["connection_healthy"]:
        print(f"Database is not reachable at {info['database_url']}")
        sys.exit(1)
    print(f"Database ready ({info['database_type']})")

    start_server()


if __name__ == "__main__":
    main()
