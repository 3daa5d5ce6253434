"""
Configuration module for FlowdeX.
Manages database, auth, and third-party integration settings.
"""
import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file next to this module
load_dotenv(os.path.join(os.path.dirname(__file__), '.env'))

logger = logging.getLogger(__name__)

# =============================================================================
# APP
# =============================================================================
APP_ENV = os.environ.get("APP_ENV", "development").strip().lower()
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# =============================================================================
# DATABASE
# =============================================================================
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///flowdex.db").strip()

# =============================================================================
# AUTH
# =============================================================================
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 1 week

# =============================================================================
# TWELVEDATA CONFIGURATION
# =============================================================================
TWELVEDATA_API_KEY = os.environ.get("TWELVEDATA_API_KEY", "")
TWELVEDATA_BASE_URL = os.environ.get("TWELVEDATA_BASE_URL", "https://api.twelvedata.com")

# Free tier = 8 calls per minute
TWELVEDATA_RATE_LIMIT = int(os.environ.get("TWELVEDATA_RATE_LIMIT", "8"))
PRICE_CACHE_TTL = int(os.environ.get("PRICE_CACHE_TTL", "60"))

# =============================================================================
# STRIPE CONFIGURATION
# =============================================================================
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
STRIPE_CURRENCY = os.environ.get("STRIPE_CURRENCY", "usd")

# =============================================================================
# S3 CONFIGURATION
# =============================================================================
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
AWS_ACCESS_KEY_ID = os.environ.get("AWS_ACCESS_KEY_ID", "")
AWS_SECRET_ACCESS_KEY = os.environ.get("AWS_SECRET_ACCESS_KEY", "")
AWS_S3_BUCKET_NAME = os.environ.get("AWS_S3_BUCKET_NAME", "")
UPLOAD_URL_EXPIRES = int(os.environ.get("UPLOAD_URL_EXPIRES", "3600"))


def setup_logging():
    """Configure root logging once (uvicorn may already have handlers)."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=LOG_LEVEL,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root.setLevel(LOG_LEVEL)


def report_integrations():
    """Log which integrations are configured. Never logs key material."""
    logger.info("TwelveData API key: %s", "present" if TWELVEDATA_API_KEY else "missing")
    if not STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set, billing endpoints disabled")
    if not AWS_S3_BUCKET_NAME:
        logger.warning("AWS_S3_BUCKET_NAME not set, file uploads disabled")
    elif not (AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY):
        logger.warning("AWS credentials not set, falling back to the default boto3 credential chain")
    if SECRET_KEY == "dev-secret-key" and APP_ENV == "production":
        logger.warning("SECRET_KEY is the development default")
