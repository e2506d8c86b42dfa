"""Install the per-module log handlers on the root logger."""

import logging
import os
from pathlib import Path
from typing import Optional

from core.logging.handlers import ModuleDispatchHandler, ThirdPartyHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FIRST_PARTY_PREFIXES = ("workflows", "core", "testing")


class _FirstPartyFilter(logging.Filter):
    def __init__(self, first_party: bool):
        super().__init__()
        self.first_party = first_party

    def filter(self, record: logging.LogRecord) -> bool:
        is_ours = record.name.split(".", 1)[0] in FIRST_PARTY_PREFIXES
        return is_ours == self.first_party


def configure_logging(
    log_dir: Optional[str | Path] = None,
    level: int = logging.INFO,
) -> Path:
    """Route project logs to per-module files and library logs to run-3p.log.

    Idempotent: handlers installed by an earlier call are replaced.

    Args:
        log_dir: Target directory (default: THALA_LOG_DIR or ./logs)
        level: Root logger level

    Returns:
        The directory logs are written to
    """
    directory = Path(log_dir or os.environ.get("THALA_LOG_DIR", "logs"))
    directory.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, (ModuleDispatchHandler, ThirdPartyHandler)):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    module_handler = ModuleDispatchHandler(directory)
    module_handler.setFormatter(formatter)
    module_handler.addFilter(_FirstPartyFilter(first_party=True))

    third_party_handler = ThirdPartyHandler(directory)
    third_party_handler.setFormatter(formatter)
    third_party_handler.addFilter(_FirstPartyFilter(first_party=False))

    root.addHandler(module_handler)
    root.addHandler(third_party_handler)
    root.setLevel(level)
    return directory
