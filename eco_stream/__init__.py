"""
Eco Stream

Streaming client for the Eco ``ask-eco`` endpoint.
"""

from eco_stream.core.config.constants import EventType
from eco_stream.streaming import (
    EcoStreamClient,
    StreamHandlers,
    StreamRequest,
    StreamResult,
    StreamSession,
)

__version__ = "1.0.0"

__all__ = [
    "EcoStreamClient",
    "EventType",
    "StreamHandlers",
    "StreamRequest",
    "StreamResult",
    "StreamSession",
]
