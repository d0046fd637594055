"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..config import get_settings
from ..database import db_manager
from ..utils.logging import configure_logging, get_logger
from .routes import router

logger = get_logger(__name__)


def create_app(init_database: bool = True) -> FastAPI:
    """
    Build the API application.

    Args:
        init_database: Open the settings store on startup. Without it the
            ATTOM override key falls back to the environment.
    """
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_database:
            try:
                await db_manager.initialize(create_tables=True)
            except Exception as e:
                logger.warning("settings_store_unavailable", error=str(e))
        logger.info("rvval_api_started", version=__version__)
        yield
        if db_manager.is_initialized:
            await db_manager.close()

    app = FastAPI(
        title="rvval",
        description="Property identity resolution and field reconciliation",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router, prefix="/api")
    return app


def main() -> None:
    import uvicorn

    config = get_settings()
    uvicorn.run(create_app(), host=config.API_HOST, port=config.API_PORT)


if __name__ == "__main__":
    main()
