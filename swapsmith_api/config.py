import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    # MongoDB
    MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    MONGO_DB = os.getenv("MONGO_DB", "swapsmith")
    MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "10000"))

    # SideShift
    SIDESHIFT_API_URL = os.getenv("SIDESHIFT_API_URL", "https://sideshift.ai/api/v2")
    SIDESHIFT_API_KEY = os.getenv("SIDESHIFT_API_KEY")
    SIDESHIFT_AFFILIATE_ID = os.getenv("SIDESHIFT_AFFILIATE_ID", "")
    SIDESHIFT_USER_IP = os.getenv("SIDESHIFT_USER_IP", "1.1.1.1")  # Used by scheduled orders with no client IP

    # Prices
    COINGECKO_API_URL = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
    COINGECKO_API_KEY = os.getenv("COINGECKO_API_KEY")

    # AI Providers (Groq: command parsing + speech-to-text)
    GROQ_API_KEY = os.getenv("GROQ_API_KEY")
    GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    GROQ_TRANSCRIBE_MODEL = os.getenv("GROQ_TRANSCRIBE_MODEL", "whisper-large-v3")

    # Auth (JWT verification)
    AUTH_AUDIENCE = os.getenv("AUTH_AUDIENCE")
    AUTH_ISSUER = os.getenv("AUTH_ISSUER")
    AUTH_RSA = os.getenv("AUTH_RSA")

    # Shared secret for POST /api/swap-status
    SWAP_STATUS_SECRET = os.getenv("SWAP_STATUS_SECRET")

    # Redis
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

    # Telegram
    TELEGRAM_API_ID = int(os.getenv("TELEGRAM_API_ID", "0"))
    TELEGRAM_API_HASH = os.getenv("TELEGRAM_API_HASH")
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")

    # Web App
    MINI_APP_URL = os.getenv("MINI_APP_URL", "https://app.swapsmith.xyz")

    # Scheduler
    SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60"))
    PRICE_MAX_AGE_SECONDS = int(os.getenv("PRICE_MAX_AGE_SECONDS", "120"))  # Older snapshots never trigger
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
    DCA_MAX_CONSECUTIVE_FAILURES = int(os.getenv("DCA_MAX_CONSECUTIVE_FAILURES", "5"))
    DCA_RETRY_BASE_SECONDS = int(os.getenv("DCA_RETRY_BASE_SECONDS", "60"))
    CLAIM_LEASE_SECONDS = int(os.getenv("CLAIM_LEASE_SECONDS", "600"))  # Triggered/locked items older than this are recovered


config = Config()
