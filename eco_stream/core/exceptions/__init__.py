"""
Exception Module

Structured exception hierarchy for the Eco streaming client.

Module Structure:
-----------------
- **base.py**: EcoStreamError base class + ConfigurationError
- **transport.py**: Network and HTTP protocol errors (before the stream opens)
- **streaming.py**: Errors raised while the event stream is open

Usage:
------
```python
from eco_stream.core.exceptions import ProtocolError, StreamAbortedError

try:
    result = await session.run()
except StreamAbortedError:
    pass  # intentional, never shown to the user
except ProtocolError as exc:
    show(exc.message)
```

Author: System Architect
Date: 2025-12-08
"""

from eco_stream.core.exceptions.base import ConfigurationError, EcoStreamError
from eco_stream.core.exceptions.streaming import (
    StreamAbortedError,
    StreamError,
    StreamStalledError,
)
from eco_stream.core.exceptions.transport import (
    ProtocolError,
    TransportError,
    friendly_status_message,
)

__all__ = [
    # Base
    "EcoStreamError",
    "ConfigurationError",
    # Transport
    "TransportError",
    "ProtocolError",
    "friendly_status_message",
    # Streaming
    "StreamError",
    "StreamAbortedError",
    "StreamStalledError",
]
