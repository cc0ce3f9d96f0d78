"""Create the job history table for the configured database."""

from __future__ import annotations

import sys

from hubtasks.config import AppConfig
from hubtasks.db.db_init import create_session_factory, init_db


def main() -> int:
    config = AppConfig.build_default()
    if not config.history_database_url:
        print("HUBTASKS_HISTORY_DATABASE_URL is not set; nothing to initialize.", file=sys.stderr)
        return 1
    engine, _ = create_session_factory(config.history_database_url)
    init_db(engine)
    print("Job history table initialized.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
