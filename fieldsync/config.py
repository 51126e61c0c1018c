import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fieldsync.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Frontend base URL for the OAuth redirect
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# QuickBooks OAuth Configuration
QUICKBOOKS_ENVIRONMENT = os.getenv("QUICKBOOKS_ENVIRONMENT", "production")  # sandbox or production
QUICKBOOKS_CLIENT_ID = os.getenv("QUICKBOOKS_CLIENT_ID")
QUICKBOOKS_CLIENT_SECRET = os.getenv("QUICKBOOKS_CLIENT_SECRET")
QUICKBOOKS_REDIRECT_URI = os.getenv(
    "QUICKBOOKS_REDIRECT_URI", f"{FRONTEND_URL}/api/quickbooks/callback"
)
# Token encryption key (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
# Falls back to a key derived from SECRET_KEY
QUICKBOOKS_ENCRYPTION_KEY = os.getenv("QUICKBOOKS_ENCRYPTION_KEY")
QUICKBOOKS_SCOPE = "com.intuit.quickbooks.accounting"
QUICKBOOKS_MINOR_VERSION = os.getenv("QUICKBOOKS_MINOR_VERSION", "65")

# QuickBooks API URLs
QUICKBOOKS_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
QUICKBOOKS_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
if QUICKBOOKS_ENVIRONMENT == "production":
    QUICKBOOKS_API_BASE_URL = "https://quickbooks.api.intuit.com"
else:
    QUICKBOOKS_API_BASE_URL = "https://sandbox-quickbooks.api.intuit.com"

# Sync tuning
QUICKBOOKS_OUTBOUND_BATCH_SIZE = int(os.getenv("QUICKBOOKS_OUTBOUND_BATCH_SIZE", "50"))
QUICKBOOKS_PAGE_SIZE = int(os.getenv("QUICKBOOKS_PAGE_SIZE", "1000"))  # QBO caps MAXRESULTS at 1000
QUICKBOOKS_MAX_RETRIES = int(os.getenv("QUICKBOOKS_MAX_RETRIES", "3"))
QUICKBOOKS_RETRY_BACKOFF = float(os.getenv("QUICKBOOKS_RETRY_BACKOFF", "1.0"))
QUICKBOOKS_HTTP_TIMEOUT = float(os.getenv("QUICKBOOKS_HTTP_TIMEOUT", "30.0"))
QUICKBOOKS_MAX_SYNC_ERRORS = int(os.getenv("QUICKBOOKS_MAX_SYNC_ERRORS", "10"))

# Scheduled sync (ARQ cron), minute of every hour
QUICKBOOKS_SYNC_CRON_MINUTE = int(os.getenv("QUICKBOOKS_SYNC_CRON_MINUTE", "15"))
