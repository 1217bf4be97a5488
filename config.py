"""
Configuration settings for the booking service.
"""
import os
import logging
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


class Config:
    SERVICE_NAME = os.getenv("SERVICE_NAME", "car-booking-service")

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

    # Pricing
    CURRENCY = os.getenv("CURRENCY", "usd")
    TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.10"))
    DEFAULT_LOCATION = os.getenv("DEFAULT_LOCATION", "Main Office")
    MAX_NOTES_LENGTH = int(os.getenv("MAX_NOTES_LENGTH", "500"))

    # Payments: "stripe" or "mock"
    PAYMENT_PROCESSOR = os.getenv("PAYMENT_PROCESSOR", "stripe")
    STRIPE_API_KEY = os.getenv("STRIPE_API_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    PROCESSOR_TIMEOUT_SECONDS = float(os.getenv("PROCESSOR_TIMEOUT_SECONDS", "10"))
    PROCESSOR_MAX_RETRIES = int(os.getenv("PROCESSOR_MAX_RETRIES", "2"))
    PROCESSOR_RETRY_BACKOFF_SECONDS = float(os.getenv("PROCESSOR_RETRY_BACKOFF_SECONDS", "0.2"))

    # Audit delivery
    AUDIT_WORKERS = int(os.getenv("AUDIT_WORKERS", "2"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = '{"timestamp":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
    LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = None):
    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format=Config.LOG_FORMAT,
        datefmt=Config.LOG_DATE_FORMAT,
    )
