"""
Configuration Module

Centralized, type-safe configuration for the Eco streaming client.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Protocol constants, enums and key lists

Usage:
------
```python
from eco_stream.core.config import get_settings
from eco_stream.core.config.constants import EventType, StreamPhase

settings = get_settings()
guard_ms = settings.fallback.STREAM_GUARD_TIMEOUT_MS
```

Environment Variables:
---------------------
```bash
ECO_API_BASE_URL=https://api.example.com
STREAM_FALLBACK_ENABLED=true
STREAM_GUARD_TIMEOUT_MS=15000
WATCHDOG_FIRST_TOKEN_MS=25000
WATCHDOG_HEARTBEAT_MS=30000
LOG_LEVEL=INFO
LOG_FORMAT=json
```
"""

from .settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
