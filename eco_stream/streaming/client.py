"""
Eco Stream Client

Public entry point. Owns the ``httpx.AsyncClient``, the in-flight registry
and the configuration, and creates one ``StreamSession`` per turn.

SINGLE-FLIGHT:
--------------
At most one live session per client message id. Registering a new session
for an id that is still streaming aborts the previous controller with
``new-send`` and evicts it before the new entry is inserted; both steps are
synchronous, so no await can interleave between them.

Usage:
    async with EcoStreamClient() as client:
        result = await client.ask(request, handlers=StreamHandlers(on_chunk=print))

        async for event in client.stream(request):
            ...

Author: System Architect
Date: 2025-12-07
"""

from collections.abc import AsyncIterator

import httpx

from eco_stream.core.config import Settings, get_settings
from eco_stream.core.config.constants import NEW_SEND_REASON, Stage
from eco_stream.core.exceptions import ConfigurationError
from eco_stream.core.logging import get_logger, log_stage
from eco_stream.streaming.cancellation import AbortController, AbortSignal, abort_controller_safely
from eco_stream.streaming.models import (
    NormalizedEvent,
    SessionHandle,
    StreamHandlers,
    StreamRequest,
    StreamResult,
    StreamRunStats,
)
from eco_stream.streaming.request_builder import IdentityProvider, StaticIdentityProvider
from eco_stream.streaming.session import SessionConfig, StreamSession

logger = get_logger(__name__)


class InFlightRegistry:
    """client message id → live ``SessionHandle``."""

    def __init__(self):
        self._handles: dict[str, SessionHandle] = {}

    def __contains__(self, client_message_id: str) -> bool:
        return client_message_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def get(self, client_message_id: str) -> SessionHandle | None:
        return self._handles.get(client_message_id)

    def register(self, client_message_id: str, controller: AbortController,
                 stats: StreamRunStats | None = None) -> SessionHandle:
        """
        Insert a handle, superseding any live one for the same id.

        The previous controller is aborted with ``new-send`` and its close
        reason recorded before it is evicted.
        """
        previous = self._handles.pop(client_message_id, None)
        if previous is not None and previous.controller is not controller:
            previous.stats.close_reason = NEW_SEND_REASON
            previous.controller.abort(NEW_SEND_REASON)
            log_stage(logger, Stage.ABORT, "Superseded live stream", level="info",
                      client_message_id=client_message_id)

        handle = SessionHandle(
            client_message_id=client_message_id,
            controller=controller,
            stats=stats or StreamRunStats(),
        )
        self._handles[client_message_id] = handle
        return handle

    def release(self, client_message_id: str, controller: AbortController) -> bool:
        """Remove the entry only if it still belongs to ``controller``."""
        current = self._handles.get(client_message_id)
        if current is None or current.controller is not controller:
            return False
        del self._handles[client_message_id]
        return True

    def abort_all(self, reason: str) -> int:
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.controller.abort(reason)
        return len(handles)


class EcoStreamClient:
    """
    Façade over sessions.

    An externally created ``httpx.AsyncClient`` is used as-is and never
    closed here; otherwise the client creates and owns one.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        identity: IdentityProvider | None = None,
        config: SessionConfig | None = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or SessionConfig.from_settings(self.settings)
        if self.config.fallback_enabled and not self.config.fallback_url:
            raise ConfigurationError(
                "JSON fallback is enabled but no fallback endpoint is configured",
                details={"setting": "ECO_FALLBACK_PATH"},
            )
        self.identity = identity or StaticIdentityProvider(client_id=self.settings.ECO_CLIENT_ID)
        self.registry = InFlightRegistry()
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.request_timeout, read=None)
        )

    async def __aenter__(self) -> "EcoStreamClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.registry.abort_all("finalize")
        if self._owns_client:
            await self.http_client.aclose()

    def create_session(
        self,
        request: StreamRequest,
        handlers: StreamHandlers | None = None,
        signal: AbortSignal | None = None,
        **config_overrides,
    ) -> StreamSession:
        """Register and return a new session for ``request``."""
        config = self.config.model_copy(update=config_overrides) if config_overrides else self.config
        controller = AbortController()
        handle = self.registry.register(request.client_message_id, controller)

        def release(session: StreamSession) -> None:
            self.registry.release(session.client_message_id, session.controller)

        return StreamSession(
            request,
            http_client=self.http_client,
            config=config,
            handlers=handlers,
            identity=self.identity,
            signal=signal,
            controller=controller,
            stats=handle.stats,
            on_finish=release,
        )

    async def ask(
        self,
        request: StreamRequest,
        handlers: StreamHandlers | None = None,
        signal: AbortSignal | None = None,
        **config_overrides,
    ) -> StreamResult:
        session = self.create_session(request, handlers=handlers, signal=signal, **config_overrides)
        return await session.run()

    async def stream(
        self,
        request: StreamRequest,
        signal: AbortSignal | None = None,
        **config_overrides,
    ) -> AsyncIterator[NormalizedEvent]:
        session = self.create_session(request, signal=signal, **config_overrides)
        events = session.events()
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    def cancel(self, client_message_id: str, reason: str = "user_cancel") -> bool:
        """Cancel the live turn for ``client_message_id`` (allow-listed reasons only)."""
        handle = self.registry.get(client_message_id)
        if handle is None:
            return False
        return abort_controller_safely(handle.controller, reason)
