import logging
from collections.abc import Iterable
from contextlib import asynccontextmanager
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from domain.models.currency import RateRecord
from infrastructure.persistence.models.rates import Base
from infrastructure.persistence.repositories.rates import RateRepository
from infrastructure.store.rate_store import RateStore

logger = logging.getLogger(__name__)


class RateArchive:
    """
    On-disk copy of committed rates so a restart does not start from an empty cache.

    The in-memory store stays authoritative; archive errors are logged and
    never propagate into a refresh or a query. With `keep` set, each
    (provider, pair) series is held to its `keep` most recent dates, on disk
    and in the store it warms.
    """

    def __init__(self, db_url: str, keep: int | None = None):
        if keep is not None and keep < 1:
            raise ValueError('retention must keep at least one record per series')
        self.keep = keep
        self.engine = create_async_engine(db_url)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            autoflush=True,
            expire_on_commit=False
        )

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self):
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def save(self, records: Iterable[RateRecord]) -> int:
        records = list(records)
        try:
            async with self.session() as session:
                repository = RateRepository(session)
                saved = await repository.upsert_records(records)
                pruned = 0
                if self.keep is not None:
                    series = {(record.provider_id, record.pair) for record in records}
                    pruned = await repository.prune(self.keep, series)
        except SQLAlchemyError as e:
            logger.error(f"Failed to archive {len(records)} rates: {e}")
            return 0
        logger.debug(f"Archived {saved} rates, pruned {pruned}")
        return saved

    async def load(self, since: date | None = None) -> list[RateRecord]:
        async with self.session() as session:
            return await RateRepository(session).get_records(since=since)

    async def warm(self, store: RateStore, since: date | None = None) -> int:
        """Commit archived rates into the store, one batch per provider."""
        try:
            if self.keep is not None:
                async with self.session() as session:
                    pruned = await RateRepository(session).prune(self.keep)
                if pruned:
                    logger.info(f"Pruned {pruned} archived rates beyond retention (keep={self.keep})")
            records = await self.load(since)
        except SQLAlchemyError as e:
            logger.error(f"Could not read rate archive, starting with an empty cache: {e}")
            return 0

        by_provider: dict[str, list[RateRecord]] = {}
        for record in records:
            by_provider.setdefault(record.provider_id, []).append(record)
        for provider_id, provider_records in by_provider.items():
            store.commit(provider_id, provider_records)
            if self.keep is not None:
                store.apply_retention(self.keep, provider_id)

        logger.info(f"Warmed cache with {len(records)} archived rates from {len(by_provider)} providers")
        return len(records)
