"""
Logging Module

Structured logging with structlog, correlated by stream ID.

Usage:
------
```python
from eco_stream.core.logging import get_logger, log_stage, set_stream_id

logger = get_logger(__name__)
set_stream_id("6f1c...")
log_stage(logger, "3.0", "Reading frames")
```
"""

from .logger import (
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
    "log_stage",
    "set_stream_id",
    "get_stream_id",
    "clear_stream_id",
]
