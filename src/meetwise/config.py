import os

from .errors import ConfigError

# Lambda sets AWS_REGION automatically; local dev may rely on AWS_DEFAULT_REGION.
AWS_REGION = (
    os.environ.get("AWS_REGION")
    or os.environ.get("AWS_DEFAULT_REGION")
    or "us-east-1"
)

TABLE_NAME = os.environ.get("TABLE_NAME")
DDB_PK_NAME = os.environ.get("DDB_PK_NAME", "pk")
DDB_SK_NAME = os.environ.get("DDB_SK_NAME", "sk")
DDB_SK_VALUE = os.environ.get("DDB_SK_VALUE", "STATE")

DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "America/Los_Angeles")

BUSINESS_HOURS_START = int(os.environ.get("BUSINESS_HOURS_START", "9"))
BUSINESS_HOURS_END = int(os.environ.get("BUSINESS_HOURS_END", "17"))
WORKING_DAYS = tuple(
    int(d) for d in os.environ.get("WORKING_DAYS", "0,1,2,3,4").split(",") if d.strip()
)
SLOT_INTERVAL_MINUTES = int(os.environ.get("SLOT_INTERVAL_MINUTES", "30"))

DEFAULT_DURATION_MINUTES = int(os.environ.get("DEFAULT_DURATION_MINUTES", "60"))
HOLD_EXPIRY_MINUTES = int(os.environ.get("HOLD_EXPIRY_MINUTES", "1440"))
AUTO_CONFIRM_THRESHOLD = float(os.environ.get("AUTO_CONFIRM_THRESHOLD", "0.85"))
FUZZY_TOMORROW_CUTOFF_HOUR = int(os.environ.get("FUZZY_TOMORROW_CUTOFF_HOUR", "17"))

WORKFLOW_MAX_RETRIES = int(os.environ.get("WORKFLOW_MAX_RETRIES", "3"))
RETRY_MAX_ATTEMPTS = int(os.environ.get("RETRY_MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY = float(os.environ.get("RETRY_BASE_DELAY", "0.4"))
RETRY_MAX_DELAY = float(os.environ.get("RETRY_MAX_DELAY", "5"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

GOOGLE_OAUTH_SECRET_NAME = os.environ.get("GOOGLE_OAUTH_SECRET_NAME")


def require_env(*names: str) -> None:
    names = names or ("TABLE_NAME", "GOOGLE_OAUTH_SECRET_NAME")
    missing = [n for n in names if not os.environ.get(n)]
    if missing:
        raise ConfigError("Missing required environment variables: " + ", ".join(missing))
