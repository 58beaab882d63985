import os
import logging
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

class Config:
    """Configuration settings for the marketplace backend"""

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = int(os.getenv("DB_POOL_MIN_SIZE", "2"))
    DB_POOL_MAX_SIZE: int = int(os.getenv("DB_POOL_MAX_SIZE", "10"))

    # Payment processor settings
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_PUBLISHABLE_KEY: str = os.getenv("STRIPE_PUBLISHABLE_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_API_BASE: str = os.getenv("STRIPE_API_BASE", "https://api.stripe.com")
    STRIPE_API_VERSION: str = os.getenv("STRIPE_API_VERSION", "2024-12-18.acacia")
    WEBHOOK_TOLERANCE_SECONDS: int = int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300"))
    CURRENCY: str = os.getenv("CURRENCY", "gbp")

    # Vendor onboarding redirects
    CONNECT_REFRESH_URL: str = os.getenv(
        "CONNECT_REFRESH_URL", "freshlocal://vendor/onboarding-refresh"
    )
    CONNECT_RETURN_URL: str = os.getenv(
        "CONNECT_RETURN_URL", "freshlocal://vendor/onboarding-complete"
    )

    # Fee settings (rates are fractions, fees are minor units)
    SERVICE_FEE_RATE: Decimal = Decimal(os.getenv("SERVICE_FEE_RATE", "0.05"))
    PLATFORM_COMMISSION_RATE: Decimal = Decimal(os.getenv("PLATFORM_COMMISSION_RATE", "0.12"))
    PROCESSOR_PERCENT_RATE: Decimal = Decimal(os.getenv("PROCESSOR_PERCENT_RATE", "0.014"))
    PROCESSOR_FIXED_FEE: int = int(os.getenv("PROCESSOR_FIXED_FEE", "20"))
    DELIVERY_FEE: int = int(os.getenv("DELIVERY_FEE", "250"))

    # Push notifications
    EXPO_PUSH_URL: str = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Europe/London")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Paths
    LOG_DIR = BASE_DIR / "logs"

    REQUIRED = ("DATABASE_URL", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")

    @classmethod
    def validate(cls):
        """Fail fast on settings the server cannot run without"""
        for name in cls.REQUIRED:
            if not getattr(cls, name):
                raise ValueError(f"No {name} set in environment")

    @classmethod
    def fee_rates(cls):
        """Fee configuration for the money engine"""
        from .services.money import FeeRates

        return FeeRates(
            service_fee_rate=cls.SERVICE_FEE_RATE,
            platform_commission_rate=cls.PLATFORM_COMMISSION_RATE,
            processor_percent_rate=cls.PROCESSOR_PERCENT_RATE,
            processor_fixed_fee=cls.PROCESSOR_FIXED_FEE,
            delivery_fee=cls.DELIVERY_FEE,
        )

def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    Config.LOG_DIR.mkdir(exist_ok=True)
    log_file = Config.LOG_DIR / "marketplace.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
