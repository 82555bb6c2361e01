"""Configuration for the AI Mediator."""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# OpenRouter API key
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

# OpenRouter API endpoint
OPENROUTER_API_URL = os.getenv(
    "OPENROUTER_API_URL", "https://openrouter.ai/api/v1/chat/completions"
)

# Model used for consultations
DEFAULT_MEDIATOR_MODEL = "openai/gpt-4o-mini"
MEDIATOR_MODEL = os.getenv("MEDIATOR_MODEL", DEFAULT_MEDIATOR_MODEL)

# Seconds to wait for a single consultation response
CONSULTATION_TIMEOUT = float(os.getenv("CONSULTATION_TIMEOUT", "120"))

# Log consultation requests instead of sending them
DRY_RUN = os.getenv("MEDIATOR_DRY_RUN", "false").lower() == "true"

# Base data directory - configurable via environment
DATA_BASE_DIR = os.getenv("MEDIATOR_DATA_DIR", "data")

# Directory holding one sub-directory per group
MEDIATIONS_DIR = os.path.join(DATA_BASE_DIR, "mediations")

# Optional URL that receives finished answers
ANSWER_WEBHOOK_URL = os.getenv("MEDIATOR_ANSWER_WEBHOOK_URL")

# Mediations can only be created in groups with at least this many members
MIN_GROUP_MEMBERS = 3

# Participants required before a mediation can be closed
MIN_PARTICIPANTS_TO_CLOSE = 1

MAX_TITLE_LENGTH = 255


def reload_config() -> dict[str, object]:
    """
    Reload configuration from the .env file.

    Only settings that are safe to change at runtime are refreshed: the API
    key, the model and the dry-run switch. The data directory stays fixed
    for the lifetime of the process.

    Returns:
        Dict with reload status and current config
    """
    global OPENROUTER_API_KEY, MEDIATOR_MODEL, DRY_RUN, ANSWER_WEBHOOK_URL

    load_dotenv(override=True)

    OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
    MEDIATOR_MODEL = os.getenv("MEDIATOR_MODEL", DEFAULT_MEDIATOR_MODEL)
    DRY_RUN = os.getenv("MEDIATOR_DRY_RUN", "false").lower() == "true"
    ANSWER_WEBHOOK_URL = os.getenv("MEDIATOR_ANSWER_WEBHOOK_URL")

    logger.info("Configuration reloaded")

    return {
        "status": "reloaded",
        "openrouter_configured": bool(OPENROUTER_API_KEY),
        "model": MEDIATOR_MODEL,
        "dry_run": DRY_RUN,
        "answer_webhook_configured": bool(ANSWER_WEBHOOK_URL),
    }
