from fastapi.middleware.cors import CORSMiddleware
from sharehub.config.settings import ConfigManager, get_config_manager
from sharehub.logging.setup import setup_logging, get_logger
from sharehub.core.database import Database
from sharehub.core.datasource import open_datasource
from sharehub.core.errors import StorageError
from sharehub.core.files.sql_repository import SQLFileRepository, SQLFolderRepository
from sharehub.core.files.lifecycle import FileLifecycleManager
from sharehub.core.files.folders import FolderAggregator
from sharehub.core.jobs import JobDispatcher, SQLJobQueue
from sharehub.core.api.router_files import router as files_router
from sharehub.core.api.router_folders import router as folders_router
from fastapi import FastAPI
from contextlib import asynccontextmanager
import asyncio


logger = get_logger(__name__)


async def expiration_sweep_task(lifecycle: FileLifecycleManager,
                                interval_seconds: float = 60):
    """
    Background task that periodically marks time-expired files as expired.

    Access checks already deny files past their expiry; the sweep only
    makes the expired flag visible in listings without waiting for a read.

    Args:
        lifecycle: File lifecycle manager
        interval_seconds: Sweep interval in seconds
    """
    logger.info(
        f"Expiration sweep started (interval: {interval_seconds}s)")

    while True:
        try:
            await asyncio.sleep(interval_seconds)
            logger.debug("Running expiration sweep")
            expired_count = lifecycle.expire_sweep()

            if expired_count == 0:
                logger.debug("Expiration sweep completed: nothing expired")

        except asyncio.CancelledError:
            logger.info("Expiration sweep task cancelled")
            break
        except Exception as e:
            logger.error(f"Error in expiration sweep: {e}", exc_info=True)


def create_app(config_manager: ConfigManager | None = None) -> FastAPI:
    """
    Build the ShareHub API application.

    Args:
        config_manager: Loaded configuration; the global one is used (and
            loaded if needed) when omitted
    """
    config_manager = config_manager or get_config_manager()
    config_manager.load()
    setup_logging(config_manager.logging_config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.debug("Starting up the application")

        files_settings = config_manager.files
        try:
            datasource = await open_datasource(
                config_manager.datasource, files_settings.chunk_size_kb * 1024)
        except StorageError as e:
            logger.error(f"Datasource unavailable, refusing to start: {e}")
            raise

        database = Database(config_manager.database_connection_string)
        file_repository = SQLFileRepository(database)
        folder_repository = SQLFolderRepository(database)

        thumbnails = config_manager.thumbnails
        dispatcher = None
        if thumbnails.enabled:
            dispatcher = JobDispatcher(
                SQLJobQueue(database),
                max_attempts=thumbnails.max_attempts,
                poll_interval=thumbnails.poll_interval_seconds,
            )
        else:
            logger.debug("Thumbnail jobs disabled")

        app.state.database = database
        app.state.datasource = datasource
        app.state.dispatcher = dispatcher
        app.state.lifecycle = FileLifecycleManager(
            datasource,
            file_repository,
            folder_repository,
            dispatcher,
            max_upload_bytes=files_settings.max_upload_mb * 1024 * 1024,
            key_length=files_settings.key_length,
            default_visibility=files_settings.default_visibility,
        )
        app.state.folders = FolderAggregator(folder_repository, file_repository)

        expiration = config_manager.expiration
        if expiration.sweep_enabled:
            app.state.sweep_task = asyncio.create_task(
                expiration_sweep_task(
                    app.state.lifecycle, expiration.sweep_interval_seconds)
            )
        else:
            logger.debug("Expiration sweep disabled")

        logger.info("Application startup complete")

        yield

        # Shutdown
        logger.debug("Shutting down the application")

        if hasattr(app.state, "sweep_task"):
            app.state.sweep_task.cancel()
            try:
                await app.state.sweep_task
            except asyncio.CancelledError:
                logger.debug("Sweep task cancelled successfully")

        database.dispose()
        logger.info("Application shutdown complete")

    app = FastAPI(title="ShareHub", lifespan=lifespan)
    app.state.config_manager = config_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        """Root endpoint for sanity check."""
        return {"message": "ShareHub API"}

    app.include_router(files_router)
    app.include_router(folders_router)

    return app


def main():
    import uvicorn
    config_manager = get_config_manager()
    config_manager.load()
    uvicorn.run("sharehub.main:create_app", factory=True,
                host=config_manager.api.host, port=config_manager.api.port)


if __name__ == "__main__":
    main()
