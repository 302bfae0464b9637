"""
Core Module

Foundational components: configuration, logging and exceptions.
"""

from .exceptions import (
    ConfigurationError,
    EcoStreamError,
    ProtocolError,
    StreamAbortedError,
    StreamError,
    StreamStalledError,
    TransportError,
)
from .logging import (
    clear_stream_id,
    get_logger,
    get_stream_id,
    log_stage,
    set_stream_id,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "set_stream_id",
    "get_stream_id",
    "clear_stream_id",
    "log_stage",
    "EcoStreamError",
    "ConfigurationError",
    "TransportError",
    "ProtocolError",
    "StreamError",
    "StreamAbortedError",
    "StreamStalledError",
]
