"""Runtime configuration read from the environment."""

import logging
import os
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

ALLOW_ORIGINS: List[str] = os.getenv('ALLOW_ORIGINS', '*').split(',')

MAX_UPLOAD_SIZE_MB = int(os.getenv('MAX_UPLOAD_SIZE_MB', '10'))
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024

DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def get_coordinator_info() -> dict:
    """Get program coordinator name and phone from environment or defaults."""
    return {
        'name': os.getenv('COORDINATOR_NAME', 'Program Coordinator'),
        'phone': os.getenv('COORDINATOR_PHONE', '+910000000000'),
    }


def configure_logging(level_name: str = LOG_LEVEL) -> None:
    """Configure root logging once for the service."""
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger('nethaji').setLevel(level)
