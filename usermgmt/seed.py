"""
CLI entrypoint for the seeding pass (default admin + legacy-row backfill).
Run once per release when SEED_ON_STARTUP=false, e.g. with several replicas:

  python -m usermgmt.seed
"""

import logging
import sys

from usermgmt.core.config import get_settings
from usermgmt.core.database import build_session_factory
from usermgmt.core.logging import configure_logging
from usermgmt.services.seeding import seed_users

logger = logging.getLogger(__name__)


def main() -> int:
    """Ensure the default administrator exists and backfill legacy users."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    db = build_session_factory(settings)()
    try:
        backfilled = seed_users(db, settings)
        logger.info("Seeding completed: users_backfilled=%s", backfilled)
        return 0
    except Exception as e:
        logger.exception("Seeding failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
