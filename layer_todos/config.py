"""Simple runtime configuration for the Layer Todos service.

Control flags are read from environment variables to allow toggling in
development or production without code changes.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


# Title shown by the index endpoint and used in startup logs.
BOARD_TITLE = os.getenv('BOARD_TITLE', "Layer's Todos")

# Root log level for the app loggers. Accepts standard logging level names.
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# When true, the app is considered to be running in development mode.
# Use DEV_MODE=1 in the environment (set by dev launch scripts) to enable
# verbose change-feed logging and other dev-only affordances.
DEV_MODE = _trueish(os.getenv('DEV_MODE', '0'))

# Seconds the /todos/stream endpoint waits for a change before emitting a
# keepalive comment and re-checking whether the client disconnected.
try:
    STREAM_KEEPALIVE_SECONDS = float(os.getenv('STREAM_KEEPALIVE_SECONDS', '15'))
except ValueError:
    STREAM_KEEPALIVE_SECONDS = 15.0


# Optional local overrides: define variables in layer_todos/local_config.py to
# extend or override the defaults above without changing versioned config.
# Don't add layer_todos/local_config.py to the git repository.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    # No local overrides present; proceed with defaults.
    pass
