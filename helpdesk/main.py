import logging
from contextlib import asynccontextmanager
from zoneinfo import ZoneInfo

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from helpdesk.api.routes import metrics, ping, tickets, users
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.services.database import DatabaseConnectionTester, to_asyncpg_dsn
from helpdesk.tickets.numbering import SequenceAllocator
from helpdesk.tickets.repository import TicketRepository
from helpdesk.tickets.service import TicketService
from helpdesk.users.repository import UserRepository
from helpdesk.users.service import UserService

logger = logging.getLogger(__name__)


def build_ticket_service(
    settings: Settings,
    session_factory: async_sessionmaker,
    ticket_repository: TicketRepository,
    user_repository: UserRepository,
) -> TicketService:
    allocator = SequenceAllocator(
        session_factory,
        tz=ZoneInfo(settings.ticket_number_timezone),
        max_attempts=settings.ticket_number_max_attempts,
    )
    return TicketService(
        ticket_repository,
        user_repository,
        allocator,
        max_attachments=settings.max_attachments,
        max_attachment_size=settings.max_attachment_size,
        allowed_attachment_types=settings.allowed_attachment_types,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    engine = create_async_engine(
        to_asyncpg_dsn(settings.database_url),
        pool_timeout=settings.database_pool_timeout,
        future=True,
    )
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    ticket_repository = TicketRepository(session_factory, engine=engine)
    user_repository = UserRepository(session_factory)

    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    app.state.database_tester = DatabaseConnectionTester(engine)
    app.state.user_repository = user_repository
    app.state.user_service = UserService(user_repository, ticket_repository)
    app.state.ticket_service = None
    try:
        await ticket_repository.ensure_schema()
        app.state.ticket_service = build_ticket_service(
            settings, session_factory, ticket_repository, user_repository
        )
    except (OSError, SQLAlchemyError):
        logger.exception("Ticket service initialisation failed; ticket routes will answer 503")
    try:
        yield
    finally:
        await engine.dispose()
        shutdown_tracer(tracer_provider)


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure while handling %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(tickets.router)
    app.include_router(users.router)
    return app


app = create_app()
