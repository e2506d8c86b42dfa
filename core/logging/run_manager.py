"""Run lifecycle for per-module log files.

A run is one extraction request or one test module. The first record written
to a module's log file inside a run rotates that file, so each file holds the
current run and ``*.previous.log`` holds the one before.

Usage:
    from core.logging import start_run, end_run

    start_run(request_id)
    try:
        await extract_themes(...)
    finally:
        end_run()
"""

from contextvars import ContextVar

# ContextVars so concurrent extraction requests keep separate rotation state
_current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)
_rotated_this_run: ContextVar[set[str] | None] = ContextVar("rotated_this_run", default=None)

_module_log_cache: dict[str, str] = {}

# Module path prefix -> log file name (longest prefix wins, unmapped -> misc)
MODULE_TO_LOG = {
    # Theme extraction
    "workflows.theme_extraction.gateway": "inference-gateway",
    "workflows.theme_extraction.stages": "theme-stages",
    "workflows.theme_extraction": "theme-extraction",
    "workflows.shared": "workflows-shared",
    # Core
    "core.embedding": "embedding",
    "core.config": "config",
    "core.logging": "logging-internal",
    "testing": "testing",
}

_SORTED_PREFIXES = sorted(MODULE_TO_LOG.keys(), key=len, reverse=True)


def start_run(run_id: str) -> None:
    """Begin a run; each log file rotates on its first write within it."""
    _current_run_id.set(run_id)
    _rotated_this_run.set(set())


def end_run() -> None:
    """End the current run. Rotation is driven by start_run, so skipping this is harmless."""
    _current_run_id.set(None)
    _rotated_this_run.set(None)


def get_current_run_id() -> str | None:
    return _current_run_id.get()


def should_rotate(log_name: str) -> bool:
    """True exactly once per log file per run.

    Outside a run nothing rotates.
    """
    run_id = _current_run_id.get()
    rotated = _rotated_this_run.get()

    if run_id is None or rotated is None:
        return False
    if log_name in rotated:
        return False

    rotated.add(log_name)
    return True


def module_to_log_name(module_name: str) -> str:
    """Resolve a logger name such as ``workflows.theme_extraction.api`` to its log file."""
    if module_name not in _module_log_cache:
        _module_log_cache[module_name] = _compute_log_name(module_name)
    return _module_log_cache[module_name]


def _compute_log_name(module_name: str) -> str:
    for prefix in _SORTED_PREFIXES:
        if module_name == prefix or module_name.startswith(prefix + "."):
            return MODULE_TO_LOG[prefix]
    return "misc"
