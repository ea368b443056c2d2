"""Configuration for the tracker.

Paths and defaults live here, each overridable through an environment
variable.
"""
import logging
import os
from pathlib import Path

DATA_DIR = Path(os.getenv("KHARCHA_DATA_DIR", "saves"))
STORE_PATH = DATA_DIR / os.getenv("KHARCHA_STORE_FILE", "kharcha.json")
LOG_LEVEL = os.getenv("KHARCHA_LOG_LEVEL", "WARNING").upper()
CURRENCY_SYMBOL = os.getenv("KHARCHA_CURRENCY", "₹")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
