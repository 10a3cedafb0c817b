"""Explicit construction of the service graph."""
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from ytfield.config import Settings
from ytfield.db.database import close_db, create_engine, create_session_maker, init_db
from ytfield.services.catalog_service import YouTubeCatalogService
from ytfield.services.discovery_service import VideoDiscoveryPoller
from ytfield.services.lifecycle_service import LifecycleService
from ytfield.services.oauth_service import OAuthSessionManager
from ytfield.services.option_store import OptionStore, SqlOptionStore
from ytfield.services.token_store import CacheInvalidator, TokenStore
from ytfield.services.upload_service import ResumableUploadService
from ytfield.workers.handlers import UPLOAD_JOB_TYPE, handle_upload
from ytfield.workers.job_runner import JobRunner
from ytfield.workers.scheduler import TokenRefreshScheduler


@dataclass
class Services:
    """Everything the HTTP layer needs, built once per application."""
    settings: Settings
    engine: Optional[AsyncEngine]
    session_maker: async_sessionmaker
    option_store: OptionStore
    token_store: TokenStore
    oauth: OAuthSessionManager
    catalog: YouTubeCatalogService
    poller: VideoDiscoveryPoller
    uploads: ResumableUploadService
    job_runner: JobRunner
    scheduler: TokenRefreshScheduler
    lifecycle: LifecycleService

    async def startup(self) -> None:
        if self.engine is not None:
            await init_db(self.engine)
        await self.lifecycle.activate()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.job_runner.shutdown()
        if self.engine is not None:
            await close_db(self.engine)


def build_services(
    settings: Settings,
    option_store: Optional[OptionStore] = None,
    cache_invalidators: Optional[Sequence[CacheInvalidator]] = None,
) -> Services:
    """Wire the services together for one settings object."""
    engine = create_engine(settings.database_url, echo=settings.debug)
    session_maker = create_session_maker(engine)

    if option_store is None:
        option_store = SqlOptionStore(session_maker)

    token_store = TokenStore(option_store, settings.token_option_key, cache_invalidators)
    oauth = OAuthSessionManager(token_store, settings)
    catalog = YouTubeCatalogService(oauth, settings)
    poller = VideoDiscoveryPoller(
        catalog,
        max_attempts=settings.video_id_retrieval_max_attempts,
        initial_delay=settings.video_id_retrieval_initial_sleep,
        interval=settings.video_id_retrieval_sleep_interval,
        recency_window=settings.recent_upload_time_window,
    )
    uploads = ResumableUploadService(oauth, settings, poller)

    job_runner = JobRunner(session_maker)
    job_runner.register_handler(UPLOAD_JOB_TYPE, handle_upload)

    scheduler = TokenRefreshScheduler(oauth, settings.cron_interval_seconds)
    lifecycle = LifecycleService(settings, option_store, token_store, scheduler)

    return Services(
        settings=settings,
        engine=engine,
        session_maker=session_maker,
        option_store=option_store,
        token_store=token_store,
        oauth=oauth,
        catalog=catalog,
        poller=poller,
        uploads=uploads,
        job_runner=job_runner,
        scheduler=scheduler,
        lifecycle=lifecycle,
    )
