from __future__ import annotations

import logging

from .config import load_settings
from .db import ensure_database


def main() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ensure_database(settings.db_path)
    logging.getLogger("guestbook.db").info("Database ready at %s", settings.db_path)


if __name__ == "__main__":
    main()
