"""
Main entry point for the matching service.
Initializes Redis, core services, background tasks and the FastAPI server.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
import uvicorn

from config.settings import settings
from core.services import build_services
from api.app import create_app
from api.dependencies import set_services, get_connection_manager

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global instances
redis_client = None
background_tasks = []


async def setup_redis():
    """Setup Redis connection with connection pooling."""
    global redis_client

    try:
        redis_client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
            decode_responses=False,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )

        await redis_client.ping()
        logger.info("✅ Redis connected successfully with connection pooling")

        return redis_client
    except Exception as e:
        logger.error(f"❌ Failed to connect to Redis: {e}")
        raise


async def setup_services():
    """Build core services on the configured backend and install them into the API."""
    if settings.STORE_BACKEND == "memory":
        services = build_services()
        logger.info("✅ Services initialized (in-memory backend)")
    else:
        services = build_services(await setup_redis())
        logger.info("✅ Services initialized (redis backend)")

    set_services(services)
    return services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI app."""
    # Startup
    logger.info("🚀 Starting application...")
    services = await setup_services()

    background_tasks.append(asyncio.create_task(services.sweeper.run_forever()))
    if services.redis is not None:
        background_tasks.append(asyncio.create_task(get_connection_manager().run_relay()))

    yield

    # Shutdown
    logger.info("🛑 Shutting down application...")
    for task in background_tasks:
        task.cancel()
    await asyncio.gather(*background_tasks, return_exceptions=True)
    background_tasks.clear()

    if redis_client:
        await redis_client.aclose()
        logger.info("✅ Redis closed")


app = create_app(lifespan=lifespan)


async def run_fastapi():
    """Run FastAPI server."""
    config = uvicorn.Config(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
    server = uvicorn.Server(config)
    await server.serve()


if __name__ == "__main__":
    try:
        asyncio.run(run_fastapi())
    except KeyboardInterrupt:
        logger.info("👋 Application stopped by user")
    except Exception as e:
        logger.error(f"❌ Application error: {e}")
