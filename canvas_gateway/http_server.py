import asyncio
import contextlib
from typing import Optional
from fastapi import FastAPI
import httpx
import uvicorn
from redis.asyncio import Redis
from .config import Settings
from .logging_util import configure_logging, get_logger
from .models import BoundSession
from .oauth import TokenExchanger, build_authorization_url
from .persistence import PersistenceFactory, ttl_cleanup_task
from .proxy import ProxyForwarder
from .routes import authRouter, proxyRouter
from .sdk.redis_client import RedisClientSingleton
from .sessions import SessionBinder
from .utils.exceptions import ConfigurationError, register_exception_handlers
from .utils.security import SessionAuthMiddleware


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    redis_client: Optional[Redis] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Raises `ConfigurationError` straight away on missing client credentials,
    so a misconfigured server never starts accepting requests. `transport`
    and `redis_client` replace the real upstream and Redis in tests.
    """
    settings = (settings or Settings()).validate()

    configure_logging(
        level=settings.LOG_LEVEL,
        log_file=settings.LOG_FILE,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client = httpx.AsyncClient(transport=transport, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
        cleanup_task = None
        owns_redis = False

        if settings.STORAGE_BACKEND == "redis":
            client = redis_client
            if client is None:
                client = await RedisClientSingleton.get_client(settings)
                owns_redis = True
            store = PersistenceFactory.create(BoundSession, scope="sessions", backend="redis", redis_client=client)
        else:
            store = PersistenceFactory.create(BoundSession, scope="sessions")
            cleanup_task = asyncio.create_task(ttl_cleanup_task(store))

        app.state.session_binder = SessionBinder(store, ttl_in_sec=settings.SESSION_TTL_SECONDS)
        app.state.token_exchanger = TokenExchanger(settings, http_client)
        app.state.proxy_forwarder = ProxyForwarder(
            settings.canvas_base_url,
            http_client,
            allowed_prefixes=settings.PROXY_ALLOWED_PATH_PREFIXES,
        )
        logger.info(f"Canvas gateway ready for {settings.canvas_base_url} (storage={settings.STORAGE_BACKEND})")

        try:
            yield
        finally:
            if cleanup_task is not None:
                cleanup_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleanup_task
            await http_client.aclose()
            if owns_redis:
                await RedisClientSingleton.close()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.authorization_url = build_authorization_url(settings)

    app.add_middleware(SessionAuthMiddleware, cookie_name=settings.SESSION_COOKIE_NAME)
    register_exception_handlers(app)
    app.include_router(authRouter, prefix="")
    app.include_router(proxyRouter, prefix="")
    return app


def main():
    settings = Settings()
    try:
        app = create_app(settings)
    except ConfigurationError as e:
        logger.critical(f"Refusing to start: {e}")
        raise SystemExit(1)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)

if __name__ == "__main__":
    main()
