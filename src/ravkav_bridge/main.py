import uvicorn
import structlog
from contextlib import asynccontextmanager
from pathlib import Path
from ravkav_bridge.api.main import app
from ravkav_bridge.config.settings import settings
from ravkav_bridge.config.logging import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app):
    logger.info("Starting RavKav Bridge",
                upstream=settings.upstream_base_url,
                pdf_storage_dir=settings.pdf_storage_dir,
                continue_on_error=settings.export_continue_on_error)

    Path(settings.pdf_storage_dir).mkdir(parents=True, exist_ok=True)

    try:
        yield
    finally:
        logger.info("Shutting down RavKav Bridge")

app.router.lifespan_context = lifespan


def main():
    logger.info("Health check available", url=f"http://localhost:{settings.port}/health")
    uvicorn.run(
        "ravkav_bridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )


if __name__ == "__main__":
    main()
