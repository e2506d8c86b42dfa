"""Per-module log files with run-based rotation.

Usage:
    from core.logging import configure_logging, start_run, end_run

    configure_logging()          # once per process
    start_run(request_id)        # per extraction request or test module
    try:
        ...
    finally:
        end_run()

    # In modules:
    logger = logging.getLogger(__name__)

Files in logs/ (or THALA_LOG_DIR):
    - theme-extraction.log, theme-stages.log, inference-gateway.log, embedding.log, ...
    - run-3p.log for third-party libraries
    - *.previous.log for the run before
"""

from core.logging.handlers import ModuleDispatchHandler, ThirdPartyHandler
from core.logging.run_manager import (
    MODULE_TO_LOG,
    end_run,
    get_current_run_id,
    module_to_log_name,
    start_run,
)
from core.logging.setup import configure_logging

__all__ = [
    "configure_logging",
    "start_run",
    "end_run",
    "get_current_run_id",
    "module_to_log_name",
    "ModuleDispatchHandler",
    "ThirdPartyHandler",
    "MODULE_TO_LOG",
]
