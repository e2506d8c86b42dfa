"""Process-wide environment setup: .env loading, run mode and tracing."""

import os

from dotenv import load_dotenv

load_dotenv()

DEV_TRACING_PROJECT = "thala-themes-dev"


def is_dev_mode() -> bool:
    """True when THALA_MODE=dev."""
    return os.getenv("THALA_MODE", "prod").lower() == "dev"


def configure_langsmith() -> None:
    """Enable LangSmith tracing in dev mode, force it off otherwise.

    In dev mode an explicit LANGSMITH_TRACING / LANGSMITH_PROJECT wins.
    Safe to call repeatedly.
    """
    if is_dev_mode():
        os.environ.setdefault("LANGSMITH_TRACING", "true")
        os.environ.setdefault("LANGSMITH_PROJECT", DEV_TRACING_PROJECT)
    else:
        os.environ["LANGSMITH_TRACING"] = "false"
