"""Persistence backends for the link registry.

A store only mirrors what the registry has already decided. It is called while
the registry lock is held, so implementations do not need their own locking.
Other processes may share the same storage, so a store never overwrites a code
it did not write and reports links that have vanished from under it.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Iterator, List

from redis import Redis, RedisError
from redis.client import Pipeline
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from src.shortener.core.config import Settings, get_redis, logger
from src.shortener.core.errors import NotFound, ShortCodeTaken, StorageError
from src.shortener.db.session import make_session_factory
from src.shortener.models.link import ClickEventRecord, ShortLinkRecord
from src.shortener.schemas.link import ClickEvent, ShortLink


class LinkStore(ABC):
    """
    Contract for durable link storage.

    Every write either completes or raises StorageError.
    """

    @abstractmethod
    def load_all(self) -> List[ShortLink]:
        """Return every stored link, click logs included, in creation order."""
        raise NotImplementedError

    @abstractmethod
    def add(self, link: ShortLink) -> None:
        """Insert a new link. Raises ShortCodeTaken if the code is already stored."""
        raise NotImplementedError

    @abstractmethod
    def record_click(self, link: ShortLink, event: ClickEvent) -> None:
        """
        Persist a click. `link` already carries the incremented count and the event.

        Raises NotFound if the link was removed from storage behind our back.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_many(self, links: List[ShortLink]) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_all(self) -> None:
        raise NotImplementedError


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_link(link: ShortLink) -> str:
    return link.model_dump_json(by_alias=True)


def deserialize_link(data: str) -> ShortLink:
    return ShortLink.model_validate_json(data)


class SqlAlchemyLinkStore(LinkStore):
    """Relational store: one row per link in short_links, one per click in click_events."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> "SqlAlchemyLinkStore":
        return cls(make_session_factory(database_url))

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error: {e}")
            raise StorageError(str(e)) from e
        finally:
            db.close()

    @staticmethod
    def _to_link(record: ShortLinkRecord) -> ShortLink:
        return ShortLink(
            id=record.link_id,
            original_url=record.original_url,
            short_code=record.short_code,
            is_custom_code=record.is_custom_code,
            created_at=as_utc(record.created_at),
            expires_at=as_utc(record.expires_at),
            click_count=record.click_count,
            click_log=[
                ClickEvent(
                    timestamp=as_utc(click.clicked_at),
                    source_origin=click.source_origin,
                    coarse_location=click.coarse_location,
                )
                for click in record.clicks
            ],
        )

    def load_all(self) -> List[ShortLink]:
        with self._session() as db:
            records = (
                db.query(ShortLinkRecord)
                .options(selectinload(ShortLinkRecord.clicks))
                .order_by(ShortLinkRecord.id)
                .all()
            )
            return [self._to_link(record) for record in records]

    def add(self, link: ShortLink) -> None:
        with self._session() as db:
            db.add(
                ShortLinkRecord(
                    link_id=link.id,
                    original_url=link.original_url,
                    short_code=link.short_code,
                    is_custom_code=link.is_custom_code,
                    created_at=link.created_at,
                    updated_at=link.created_at,
                    expires_at=link.expires_at,
                    click_count=link.click_count,
                )
            )
            try:
                db.flush()
            except IntegrityError as e:
                logger.warning(f"Short code {link.short_code} already exists in the database")
                raise ShortCodeTaken(f"Short code '{link.short_code}' already exists") from e

    def record_click(self, link: ShortLink, event: ClickEvent) -> None:
        with self._session() as db:
            record = (
                db.query(ShortLinkRecord)
                .filter(ShortLinkRecord.link_id == link.id)
                .first()
            )
            if record is None:
                raise NotFound(f"Short code '{link.short_code}' is no longer stored")

            record.click_count = link.click_count
            db.add(
                ClickEventRecord(
                    short_link_id=record.id,
                    clicked_at=event.timestamp,
                    source_origin=event.source_origin,
                    coarse_location=event.coarse_location,
                )
            )

    def delete_many(self, links: List[ShortLink]) -> None:
        if not links:
            return
        link_ids = [link.id for link in links]
        with self._session() as db:
            row_ids = [
                row_id
                for (row_id,) in db.query(ShortLinkRecord.id)
                .filter(ShortLinkRecord.link_id.in_(link_ids))
                .all()
            ]
            db.query(ClickEventRecord).filter(
                ClickEventRecord.short_link_id.in_(row_ids)
            ).delete(synchronize_session=False)
            db.query(ShortLinkRecord).filter(
                ShortLinkRecord.id.in_(row_ids)
            ).delete(synchronize_session=False)

    def delete_all(self) -> None:
        with self._session() as db:
            db.query(ClickEventRecord).delete(synchronize_session=False)
            db.query(ShortLinkRecord).delete(synchronize_session=False)


class RedisLinkStore(LinkStore):
    """
    Redis store.

    Links live as JSON documents in the hash `<prefix>:links` keyed by short
    code; `<prefix>:order` is a list of codes in creation order.
    """

    def __init__(self, redis: Redis, prefix: str = "shortener"):
        self._redis = redis
        self._links_key = f"{prefix}:links"
        self._order_key = f"{prefix}:order"

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except RedisError as e:
            logger.error(f"Redis error: {e}")
            raise StorageError(str(e)) from e

    def load_all(self) -> List[ShortLink]:
        with self._guard():
            order = self._redis.lrange(self._order_key, 0, -1)
            documents = self._redis.hgetall(self._links_key)

        links = []
        for code in order:
            data = documents.get(code)
            if data is None:
                logger.warning(f"Redis order list references missing link {code}")
                continue
            links.append(deserialize_link(data))
        return links

    def add(self, link: ShortLink) -> None:
        def claim(pipe: Pipeline) -> None:
            if pipe.hexists(self._links_key, link.short_code):
                logger.warning(f"Short code {link.short_code} already exists in Redis")
                raise ShortCodeTaken(f"Short code '{link.short_code}' already exists")
            pipe.multi()
            pipe.hset(self._links_key, link.short_code, serialize_link(link))
            pipe.rpush(self._order_key, link.short_code)

        with self._guard():
            self._redis.transaction(claim, self._links_key)

    def record_click(self, link: ShortLink, event: ClickEvent) -> None:
        # only overwrite the document this link was loaded from
        def update(pipe: Pipeline) -> None:
            data = pipe.hget(self._links_key, link.short_code)
            if data is None or deserialize_link(data).id != link.id:
                raise NotFound(f"Short code '{link.short_code}' is no longer stored")
            pipe.multi()
            pipe.hset(self._links_key, link.short_code, serialize_link(link))

        with self._guard():
            self._redis.transaction(update, self._links_key)

    def delete_many(self, links: List[ShortLink]) -> None:
        if not links:
            return
        with self._guard():
            pipe = self._redis.pipeline(transaction=True)
            pipe.hdel(self._links_key, *[link.short_code for link in links])
            for link in links:
                pipe.lrem(self._order_key, 0, link.short_code)
            pipe.execute()

    def delete_all(self) -> None:
        with self._guard():
            self._redis.delete(self._links_key, self._order_key)


def build_store(settings: Settings) -> LinkStore:
    """
    Create the store selected by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "sql":
        logger.info("Using SQL storage backend")
        return SqlAlchemyLinkStore.from_url(settings.DATABASE_URL)
    if backend == "redis":
        logger.info("Using Redis storage backend")
        return RedisLinkStore(get_redis(settings.REDIS_URL), prefix=settings.REDIS_KEY_PREFIX)
    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")
