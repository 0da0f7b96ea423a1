import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
CURRENCY = "usd"
LESSON_PAYMENT_TYPE = "lessons-payment"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")

ERROR_PAGE = BASE_DIR / "public" / "static-file-error.html"


def publishable_key():
    return os.getenv("STRIPE_PUBLISHABLE_KEY")


def webhook_secret():
    return os.getenv("STRIPE_WEBHOOK_SECRET")


def static_dir() -> Path:
    path = Path(os.getenv("STATIC_DIR", "public"))
    return path if path.is_absolute() else BASE_DIR / path


def payment_method_selection() -> str:
    """Which entry of the processor's payment-method listing counts as "current".

    "last" takes the final record of the listing, "first" the leading one.
    """
    value = os.getenv("PAYMENT_METHOD_SELECTION", "last").lower()
    if value not in ("first", "last"):
        raise RuntimeError(
            f"PAYMENT_METHOD_SELECTION must be 'first' or 'last', got {value!r}"
        )
    return value
