# boxoffice/config.py
import logging

from decouple import config

MONGO_URI = config("MONGO_URI", default="mongodb://localhost:27017")
DATABASE_NAME = config("DATABASE_NAME", default="event_ticketing")
STORE_BACKEND = config("STORE_BACKEND", default="mongo")  # "mongo" or "memory"

# Reservations
RESERVATION_MINUTES = config("RESERVATION_MINUTES", default=10, cast=int)
EXPIRE_SWEEP_BATCH = config("EXPIRE_SWEEP_BATCH", default=50, cast=int)

# Pricing
PLATFORM_FEE_RATE = config("PLATFORM_FEE_RATE", default=0.05, cast=float)
PAYMENT_FEE_RATE = config("PAYMENT_FEE_RATE", default=0.025, cast=float)
TAX_RATE = config("TAX_RATE", default=0.18, cast=float)
CURRENCY = config("CURRENCY", default="INR")
DEFAULT_PROMOTER_DISCOUNT = config("DEFAULT_PROMOTER_DISCOUNT", default=10.0, cast=float)

# Tickets
TICKET_SECRET = config("TICKET_SECRET", default="boxoffice-ticket-secret")
TRANSFER_CUTOFF_HOURS = config("TRANSFER_CUTOFF_HOURS", default=4, cast=int)
TRANSFER_TTL_HOURS = config("TRANSFER_TTL_HOURS", default=24, cast=int)
SHARE_LINK_DEFAULT_DAYS = config("SHARE_LINK_DEFAULT_DAYS", default=7, cast=int)

# Payments
PAYMENT_GATEWAY_SECRET = config("PAYMENT_GATEWAY_SECRET", default="sandbox-secret")
DEFAULT_INVENTORY_CHARGE = config("DEFAULT_INVENTORY_CHARGE", default="on_purchase")

# Caller identity
JWT_SECRET_KEY = config("JWT_SECRET_KEY", default="your-secret-key")  # Load from environment in production
JWT_ALGORITHM = config("JWT_ALGORITHM", default="HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = config("ACCESS_TOKEN_EXPIRE_MINUTES", default=30, cast=int)

LOG_LEVEL = config("LOG_LEVEL", default="INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
