import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./community_billing.db")
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0") == "1"
AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "0") == "1"

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
