"""
OAuth Validator Logging Module
==============================

LOG_LEVEL-aware print logging shared by the flow driver, the callback
receiver, the phase and the CLI.

Levels (most to least verbose):
    DEBUG - every request, redirect hop and callback (default)
    INFO  - phase and scenario progress
    WARN  - successes, warnings and errors
    ERROR - errors only, on stderr

Usage:
    LOG_LEVEL=WARN oauth-flow-validator ...
    oauth-flow-validator --log-level INFO ...
"""

import os
import sys

LOG_LEVELS = ('DEBUG', 'INFO', 'WARN', 'ERROR')

_env_level = os.getenv('LOG_LEVEL', 'DEBUG').upper()
# Unknown values fall back to DEBUG
_level = LOG_LEVELS.index(_env_level) if _env_level in LOG_LEVELS else 0


def set_log_level(name: str):
    """Change the threshold at runtime (the CLI's --log-level)."""
    global _level
    name = name.upper()
    if name not in LOG_LEVELS:
        raise ValueError(f"Unknown log level {name!r}, expected one of {', '.join(LOG_LEVELS)}")
    _level = LOG_LEVELS.index(name)


def should_log(level: str) -> bool:
    return LOG_LEVELS.index(level) >= _level


def _emit(level: str, args, kwargs, stream=None):
    if should_log(level):
        print(*args, **kwargs, file=stream or sys.stdout)


def log_debug(*args, **kwargs):
    """Protocol detail: requests, hops, callbacks."""
    _emit('DEBUG', args, kwargs)


def log_info(*args, **kwargs):
    _emit('INFO', args, kwargs)


def log_success(*args, **kwargs):
    # Shown down to WARN so a quiet run still lists what passed
    _emit('WARN', args, kwargs)


def log_warning(*args, **kwargs):
    _emit('WARN', args, kwargs)


def log_error(*args, **kwargs):
    """Errors are never filtered and go to stderr."""
    print(*args, **kwargs, file=sys.stderr)
