# setup_db.py
import logging
import sys

from db import Base, engine
from models.user_progress import UserProgress  # noqa: F401  registers the table

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("setup_db")

if __name__ == "__main__":
    if "--drop" in sys.argv:
        logger.info("Dropping tables...")
        Base.metadata.drop_all(bind=engine)
    logger.info("Creating tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Done.")
