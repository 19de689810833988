"""Short-link registry: allocation, resolution, click accounting and purging.

All state lives in one in-memory map guarded by a single re-entrant lock. Every
operation that reads-then-writes runs entirely inside the lock and writes the
store before touching the map, so a failed durable write leaves the registry
unchanged.
"""

import threading
import uuid
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, Iterable, List, Optional

from src.shortener.core.config import Settings, settings as default_settings, logger
from src.shortener.core.errors import (
    CodeGenerationFailed,
    Expired,
    NotFound,
    RegistryError,
    ShortCodeTaken,
    StorageError,
)
from src.shortener.schemas.link import ClickEvent, LinkCreate, RegistrySummary, ShortLink
from src.shortener.services.codes import (
    generate_short_code,
    is_reserved,
    validate_custom_code,
    validate_url,
    validate_validity,
)
from src.shortener.services.storage import LinkStore

DEFAULT_SOURCE_ORIGIN = "Direct"
DEFAULT_COARSE_LOCATION = "Unknown"


def utc_now() -> datetime:
    return datetime.now(UTC)


class Registry:
    """
    Owns every ShortLink, keyed by short code.

    Args:
        store: Optional persistence backend mirrored on every mutation
        settings: Validation and generation settings
        clock: Returns the current aware UTC time
        code_generator: Returns a random candidate code for a given length
    """

    def __init__(
        self,
        store: Optional[LinkStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        code_generator: Callable[[int], str] = generate_short_code,
    ):
        self._store = store
        self._settings = settings or default_settings
        self._clock = clock
        self._generate = code_generator
        self._links: Dict[str, ShortLink] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._links)

    def load(self) -> int:
        """
        Replace in-memory state with whatever the store holds.

        Returns:
            Number of links loaded
        """
        if self._store is None:
            return 0
        with self._lock:
            links = self._store.load_all()
            self._links = {link.short_code: link for link in links}
            logger.info(f"Loaded {len(links)} short links from storage")
            return len(links)

    def _validate(self, original_url, custom_code, validity_minutes):
        url = validate_url(original_url)
        validity = validate_validity(
            validity_minutes,
            minimum=self._settings.MIN_VALIDITY_MINUTES,
            maximum=self._settings.MAX_VALIDITY_MINUTES,
            default=self._settings.DEFAULT_VALIDITY_MINUTES,
        )
        if custom_code is not None:
            validate_custom_code(
                custom_code,
                pattern=self._settings.CUSTOM_CODE_PATTERN,
                reserved=self._settings.RESERVED_CODES,
            )
        return url, validity

    def _new_code(self, taken: Iterable[str] = ()) -> str:
        taken = set(taken)
        length = self._settings.SHORT_CODE_LENGTH
        for attempt in range(self._settings.MAX_GENERATION_ATTEMPTS):
            code = self._generate(length)
            if code in self._links or code in taken:
                logger.debug(f"Generated code {code} collides, retrying (attempt {attempt + 1})")
                continue
            if is_reserved(code, self._settings.RESERVED_CODES):
                continue
            return code
        raise CodeGenerationFailed(
            f"No free short code after {self._settings.MAX_GENERATION_ATTEMPTS} attempts"
        )

    def _commit(self, url: str, code: str, is_custom: bool, validity: int) -> ShortLink:
        now = self._clock()
        link = ShortLink(
            id=uuid.uuid4().hex,
            original_url=url,
            short_code=code,
            is_custom_code=is_custom,
            created_at=now,
            expires_at=now + timedelta(minutes=validity),
        )
        if self._store is not None:
            self._store.add(link)
        self._links[code] = link
        logger.info(f"Created short link {code} -> {url} (expires {link.expires_at.isoformat()})")
        return link.model_copy(deep=True)

    def _commit_generated(self, url: str, validity: int, taken: Iterable[str] = ()) -> ShortLink:
        """Commit under a random code, drawing again if the store already holds it."""
        taken = set(taken)
        for _ in range(self._settings.MAX_GENERATION_ATTEMPTS):
            code = self._new_code(taken)
            try:
                return self._commit(url, code, False, validity)
            except ShortCodeTaken:
                taken.add(code)
        raise CodeGenerationFailed(
            f"No free short code after {self._settings.MAX_GENERATION_ATTEMPTS} attempts"
        )

    def _roll_back(self, links: List[ShortLink]) -> None:
        if not links:
            return
        try:
            if self._store is not None:
                self._store.delete_many(links)
        except StorageError as e:
            logger.error(f"Could not roll back {len(links)} links of a failed batch: {e}")
            return
        for link in links:
            del self._links[link.short_code]
        logger.info(f"Rolled back {len(links)} links of a failed batch")

    def create(
        self,
        original_url: str,
        custom_code: Optional[str] = None,
        validity_minutes: Optional[int] = None,
    ) -> ShortLink:
        """
        Create a new short link.

        Args:
            original_url: Absolute http(s) URL to shorten
            custom_code: Caller-chosen code, or None to generate one
            validity_minutes: Lifetime in minutes, or None for the default

        Returns:
            Copy of the stored ShortLink

        Raises:
            InvalidUrl, InvalidValidity, InvalidShortCode: On bad input
            ShortCodeTaken: If the custom code is held by any unpurged record
            CodeGenerationFailed: If no free random code could be found
            StorageError: If the durable write failed; nothing is committed
        """
        url, validity = self._validate(original_url, custom_code, validity_minutes)

        with self._lock:
            if custom_code is not None:
                if custom_code in self._links:
                    logger.warning(f"Short code {custom_code} is already taken")
                    raise ShortCodeTaken(f"Short code '{custom_code}' already exists")
                return self._commit(url, custom_code, True, validity)
            return self._commit_generated(url, validity)

    def create_many(self, requests: List[LinkCreate]) -> List[ShortLink]:
        """
        Create several links at once.

        The whole batch is validated first, including custom codes repeated
        within the batch, so a bad item rejects the batch before anything is
        committed. If a commit fails halfway, the links already committed are
        removed again before the error is raised.
        """
        validated = [
            self._validate(item.original_url, item.custom_code, item.validity_minutes)
            for item in requests
        ]

        with self._lock:
            claimed = set()
            for item in requests:
                code = item.custom_code
                if code is None:
                    continue
                if code in self._links or code in claimed:
                    logger.warning(f"Short code {code} is already taken")
                    raise ShortCodeTaken(f"Short code '{code}' already exists")
                claimed.add(code)

            created = []
            try:
                for item, (url, validity) in zip(requests, validated):
                    if item.custom_code is not None:
                        created.append(self._commit(url, item.custom_code, True, validity))
                    else:
                        created.append(self._commit_generated(url, validity, taken=claimed))
            except RegistryError:
                self._roll_back(created)
                raise
            logger.info(f"Created {len(created)} short links in one batch")
            return created

    def resolve(
        self,
        short_code: str,
        source_origin: Optional[str] = None,
        coarse_location: Optional[str] = None,
    ) -> ShortLink:
        """
        Resolve a short code and record the click.

        Args:
            short_code: Code to resolve
            source_origin: Where the request came from, as seen by the caller
            coarse_location: Best-effort location label supplied by the caller

        Returns:
            Copy of the updated ShortLink

        Raises:
            NotFound: If no record holds the code, or storage no longer does
            Expired: If the record's validity period is over
            StorageError: If the click could not be persisted; nothing is counted
        """
        with self._lock:
            link = self._links.get(short_code)
            if link is None:
                logger.warning(f"Short link {short_code} not found")
                raise NotFound(f"Short code '{short_code}' not found")

            now = self._clock()
            if link.is_expired(now):
                logger.warning(f"Attempted to access expired short link {short_code} (expired {link.expires_at.isoformat()})")
                raise Expired(f"Short code '{short_code}' has expired")

            event = ClickEvent(
                timestamp=now,
                source_origin=source_origin or DEFAULT_SOURCE_ORIGIN,
                coarse_location=coarse_location or DEFAULT_COARSE_LOCATION,
            )
            updated = link.model_copy(
                update={
                    "click_count": link.click_count + 1,
                    "click_log": [*link.click_log, event],
                }
            )
            if self._store is not None:
                try:
                    self._store.record_click(updated, event)
                except NotFound:
                    logger.warning(f"Short link {short_code} was removed from storage, dropping it")
                    del self._links[short_code]
                    raise
            self._links[short_code] = updated
            logger.info(f"Click recorded for {short_code} (clicks={updated.click_count})")
            return updated.model_copy(deep=True)

    def get(self, short_code: str) -> ShortLink:
        """Look a link up without counting a click."""
        with self._lock:
            link = self._links.get(short_code)
            if link is None:
                raise NotFound(f"Short code '{short_code}' not found")
            return link.model_copy(deep=True)

    def list(self) -> List[ShortLink]:
        """Snapshot of every link, expired ones included, in creation order."""
        with self._lock:
            return [link.model_copy(deep=True) for link in self._links.values()]

    def summary(self) -> RegistrySummary:
        with self._lock:
            now = self._clock()
            links = list(self._links.values())
        expired = sum(1 for link in links if link.is_expired(now))
        return RegistrySummary(
            total=len(links),
            active=len(links) - expired,
            expired=expired,
            total_clicks=sum(link.click_count for link in links),
        )

    def purge(self, short_code: str) -> bool:
        """
        Remove a single link regardless of its state.

        Returns:
            True if removed, False if not found
        """
        with self._lock:
            link = self._links.get(short_code)
            if link is None:
                return False
            if self._store is not None:
                self._store.delete_many([link])
            del self._links[short_code]
            logger.info(f"Purged short link {short_code}")
            return True

    def purge_expired(self) -> int:
        """
        Remove every link whose validity period is over.

        Returns:
            Number of links removed
        """
        with self._lock:
            now = self._clock()
            expired = [link for link in self._links.values() if link.is_expired(now)]
            if not expired:
                return 0
            if self._store is not None:
                self._store.delete_many(expired)
            for link in expired:
                del self._links[link.short_code]
            logger.info(f"Purged {len(expired)} expired short links")
            return len(expired)

    def purge_all(self) -> int:
        """Remove every link; returns how many were held."""
        with self._lock:
            if self._store is not None:
                self._store.delete_all()
            count = len(self._links)
            self._links = {}
            logger.info(f"Purged all {count} short links")
            return count
