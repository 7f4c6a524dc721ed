from config.config import Config
from config import constants
from config.constants import ActivityType, SURVEY_STEPS
from config.logger import logger, setup_logging
from config.strings import Strings

__all__ = [
    "Config",
    "constants",
    "ActivityType",
    "SURVEY_STEPS",
    "logger",
    "setup_logging",
    "Strings",
]
