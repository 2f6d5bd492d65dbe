#!/usr/bin/env python3
"""
Run Alembic Migrations Script (Python)
Runs migrations on the development database, and optionally on other
databases on the same server, using .env configuration

Usage:
    python scripts/run-migrations.py                          # vetbridge_dev
    python scripts/run-migrations.py vetbridge_dev vetbridge_staging
"""

import os
import subprocess
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from vetbridge.config import settings  # noqa: E402

DEFAULT_DATABASE = "vetbridge_dev"


def _masked(url: str) -> str:
    return url.replace("postgres:postgres@", "postgres:***@")


def run_migrations(database_name: str = DEFAULT_DATABASE):
    """Run Alembic migrations on specified database"""
    # Get base URL from settings (reads from .env)
    original_url = settings.DATABASE_URL
    base, _, _ = original_url.rpartition("/")
    new_url = f"{base}/{database_name}"

    # alembic/env.py reads DATABASE_URL from the environment first
    env = os.environ.copy()
    env["DATABASE_URL"] = new_url

    print(f"📊 Migrating {database_name} database...")
    print(f"   URL: {_masked(new_url)}")

    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=project_root,
        env=env,
    )

    if result.returncode != 0:
        print(f"❌ Migration failed for {database_name}")
        sys.exit(1)

    print(f"✅ {database_name} migration complete!")


def main():
    """Main entry point"""
    print("🔄 Running Alembic migrations...")
    print(f"📄 Using .env file: {project_root / '.env'}")
    print(f"📄 Current DATABASE_URL: {_masked(settings.DATABASE_URL)}")
    print()

    for database_name in sys.argv[1:] or [DEFAULT_DATABASE]:
        run_migrations(database_name)
        print()

    print("✅ All migrations complete!")


if __name__ == "__main__":
    main()
