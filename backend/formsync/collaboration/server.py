"""
Collaboration server: Socket.IO transport wired to the collaboration services,
mounted in front of the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

import socketio
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.middleware.cors import CORSMiddleware

from formsync.api import collaboration_router, health_router
from formsync.core.config import Settings, get_settings
from formsync.core.errors import CollaborationError, register_exception_handlers
from formsync.core.logging_config import RequestLoggingMiddleware, configure_logging
from formsync.db import database
from formsync.db.store import CollaborationStore
from formsync.models import utcnow

from .broadcaster import UpdateBroadcaster
from .connection_manager import ConnectionManager
from .events import CLIENT_EVENTS, EventType
from .gate import IdentityGate
from .handlers import CollaborationHandlers
from .locks import LockTable
from .presence import PresenceNotifier
from .rooms import RoomDirectory
from .submission import SubmissionCoordinator
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


class CollaborationServer:
    """
    Owns one Socket.IO server and the services behind it.

    `engine` and `sio` default to the configured database and a new
    `socketio.AsyncServer`; both can be injected.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
        sio: Any = None,
        clock: Callable = utcnow,
    ):
        self.settings = settings or get_settings()

        if engine is None:
            self.engine = database.engine
            session_factory = database.AsyncSessionLocal
        else:
            self.engine = engine
            session_factory = database.create_session_factory(engine)

        self.store = CollaborationStore(session_factory, clock=clock)
        self.sio = sio if sio is not None else self._create_socketio_server()

        # Core components
        self.connection_manager = ConnectionManager(self.sio)
        self.gate = IdentityGate(self.store)
        self.rooms = RoomDirectory(self.store, self.connection_manager)
        self.locks = LockTable(self.store, self.settings.lock_lease_seconds)
        self.broadcaster = UpdateBroadcaster(self.store, self.locks, self.connection_manager)
        self.presence = PresenceNotifier(self.connection_manager, self.locks, self.store)
        self.submission = SubmissionCoordinator(self.store, self.connection_manager)
        self.handlers = CollaborationHandlers(
            store=self.store,
            connections=self.connection_manager,
            gate=self.gate,
            rooms=self.rooms,
            locks=self.locks,
            broadcaster=self.broadcaster,
            presence=self.presence,
            submission=self.submission,
        )
        self.sweeper = ExpirySweeper(
            self.locks, self.connection_manager, self.settings.lock_sweep_interval_seconds
        )

        self.stats = {"started_at": utcnow()}

        self._setup_socketio_handlers()

    def _create_socketio_server(self) -> socketio.AsyncServer:
        origins = self.settings.allowed_origins
        options = dict(
            async_mode="asgi",
            cors_allowed_origins="*" if "*" in origins else origins,
            ping_interval=self.settings.ping_interval,
            ping_timeout=self.settings.ping_timeout,
            logger=False,
            engineio_logger=False,
        )

        # Room emits fan out across instances through Redis when configured
        if self.settings.redis_url:
            options["client_manager"] = socketio.AsyncRedisManager(self.settings.redis_url)
            logger.info("Socket.IO using Redis client manager")

        return socketio.AsyncServer(**options)

    def _setup_socketio_handlers(self):
        """Register connect, disconnect and every client event with Socket.IO."""

        @self.sio.event
        async def connect(sid, environ, auth=None):
            try:
                identity = await self.handlers.handle_connect(sid, environ, auth)
            except CollaborationError as e:
                logger.warning(f"Socket.IO connection {sid} rejected: {e.message}")
                raise socketio.exceptions.ConnectionRefusedError(e.message, e.to_payload())

            logger.info(f"Socket.IO user {identity.email} connected: {sid}")

        @self.sio.event
        async def disconnect(sid, reason=None):
            await self.handlers.handle_disconnect(sid)

        for event_type in CLIENT_EVENTS:
            self.sio.on(event_type.value, self._event_handler(event_type))

    def _event_handler(self, event_type: EventType):
        async def handler(sid, data=None):
            return await self.handlers.handle_event(sid, event_type, data)

        handler.__name__ = event_type.value.replace("-", "_")
        return handler

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Startup: logging, tables, sweeper. Shutdown in reverse."""
        configure_logging(self.settings)
        logger.info(f"Starting {self.settings.app_name}...")

        await database.init_db(self.engine)
        self.sweeper.start()

        yield

        logger.info(f"Shutting down {self.settings.app_name}...")
        await self.sweeper.stop()
        await database.close_db(self.engine)

    def create_api(self) -> FastAPI:
        """FastAPI application serving health and collaboration diagnostics."""
        app = FastAPI(
            title=self.settings.app_name,
            description="Real-time collaborative form filling over Socket.IO",
            version=self.settings.app_version,
            lifespan=self.lifespan,
        )
        app.state.collaboration = self

        app.add_middleware(RequestLoggingMiddleware)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.allowed_origins,
            allow_credentials=self.settings.allow_credentials,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
        )

        register_exception_handlers(app)

        app.include_router(health_router)
        app.include_router(collaboration_router, prefix="/api")

        return app

    def create_asgi_app(self, api: Optional[FastAPI] = None) -> socketio.ASGIApp:
        """Socket.IO in front, everything else forwarded to FastAPI."""
        return socketio.ASGIApp(
            self.sio,
            other_asgi_app=api or self.create_api(),
            socketio_path=self.settings.socketio_path,
        )

    def get_server_stats(self) -> Dict[str, Any]:
        return {
            "started_at": self.stats["started_at"].isoformat(),
            "uptime_seconds": (utcnow() - self.stats["started_at"]).total_seconds(),
            "connections": self.connection_manager.get_statistics(),
            "events": self.handlers.get_statistics(),
            "sweeper": self.sweeper.get_statistics(),
        }


def create_app(settings: Optional[Settings] = None) -> socketio.ASGIApp:
    """Create the ASGI application: Socket.IO wrapping the FastAPI app."""
    return CollaborationServer(settings).create_asgi_app()
