import os
import secrets
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

# Storage Configuration
DATA_DIR = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(DATA_DIR, 'decision_trees.db')}")

# Slack Configuration
SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN", "")
# An unset secret still gets a random value so unsigned requests never verify
SLACK_SIGNING_SECRET = os.getenv("SLACK_SIGNING_SECRET", secrets.token_hex(32))
SLACK_API_URL = os.getenv("SLACK_API_URL", "https://slack.com/api")
SLACK_REQUEST_MAX_AGE = int(os.getenv("SLACK_REQUEST_MAX_AGE", "300"))

# Web Editor Configuration
APP_URL = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")
EDIT_TOKEN_TTL_MINUTES = int(os.getenv("EDIT_TOKEN_TTL_MINUTES", "60"))

# Application Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def editor_url(token: str) -> str:
    return f"{APP_URL}/edit/{token}"
