"""Tests for the link registry."""

import re
from datetime import timedelta

import pytest

from src.shortener.core.errors import (
    CodeGenerationFailed,
    Expired,
    InvalidShortCode,
    InvalidUrl,
    InvalidValidity,
    NotFound,
    ShortCodeTaken,
    StorageError,
)
from src.shortener.schemas.link import LinkCreate
from src.shortener.services.registry import Registry
from src.shortener.services.storage import SqlAlchemyLinkStore


def scripted(*codes):
    """Code generator returning the given codes in order."""
    it = iter(codes)
    return lambda length: next(it)


class FailsOnSecondAdd(SqlAlchemyLinkStore):
    """SQL store whose second insert fails."""

    adds = 0

    def add(self, link):
        self.adds += 1
        if self.adds == 2:
            raise StorageError("disk full")
        super().add(link)


class TestCreate:
    def test_generated_code_resolves(self, registry, settings, sample_urls):
        for url in sample_urls:
            link = registry.create(url)
            assert re.fullmatch(settings.CUSTOM_CODE_PATTERN, link.short_code)
            assert len(link.short_code) == settings.SHORT_CODE_LENGTH
            assert not link.is_custom_code
            assert registry.resolve(link.short_code).original_url == url

    def test_fields(self, registry, clock):
        link = registry.create("https://example.com/a", validity_minutes=45)
        assert link.created_at == clock.now
        assert link.expires_at == clock.now + timedelta(minutes=45)
        assert link.click_count == 0
        assert link.click_log == []
        assert len(link.id) == 32

    def test_default_validity(self, registry, clock):
        link = registry.create("https://example.com/a")
        assert link.expires_at - link.created_at == timedelta(minutes=30)

    def test_custom_code(self, registry):
        link = registry.create("https://example.com/b", "mycode", 30)
        assert link.short_code == "mycode"
        assert link.is_custom_code

    def test_custom_code_taken(self, registry):
        registry.create("https://example.com/b", "mycode", 30)
        with pytest.raises(ShortCodeTaken):
            registry.create("https://example.com/c", "mycode", 30)
        assert len(registry) == 1

    def test_expired_custom_code_stays_reserved(self, registry, clock):
        registry.create("https://example.com/b", "mycode", 1)
        clock.advance(minutes=5)
        with pytest.raises(ShortCodeTaken):
            registry.create("https://example.com/c", "mycode", 30)

    def test_custom_code_free_after_purge(self, registry, clock):
        registry.create("https://example.com/b", "mycode", 1)
        clock.advance(minutes=5)
        registry.purge_expired()
        link = registry.create("https://example.com/c", "mycode", 30)
        assert link.original_url == "https://example.com/c"

    def test_invalid_url(self, registry):
        with pytest.raises(InvalidUrl):
            registry.create("not a url")
        assert len(registry) == 0

    @pytest.mark.parametrize("validity", [0, 10081, -1, "10"])
    def test_invalid_validity(self, registry, validity):
        with pytest.raises(InvalidValidity):
            registry.create("https://example.com/a", validity_minutes=validity)

    @pytest.mark.parametrize("code", ["ab", "has-dash", "waytoolongcode", "stats"])
    def test_invalid_custom_code(self, registry, code):
        with pytest.raises(InvalidShortCode):
            registry.create("https://example.com/a", code)

    def test_retries_on_collision(self, settings, clock):
        registry = Registry(settings=settings, clock=clock, code_generator=scripted("aaaaaa", "aaaaaa", "aaaaaa", "bbbbbb"))
        assert registry.create("https://example.com/1").short_code == "aaaaaa"
        assert registry.create("https://example.com/2").short_code == "bbbbbb"

    def test_generated_code_avoids_custom_codes(self, settings, clock):
        registry = Registry(settings=settings, clock=clock, code_generator=scripted("taken1", "free01"))
        registry.create("https://example.com/1", "taken1")
        assert registry.create("https://example.com/2").short_code == "free01"

    def test_generated_code_skips_reserved_words(self, settings, clock):
        registry = Registry(settings=settings, clock=clock, code_generator=scripted("health", "Health", "ok1234"))
        assert registry.create("https://example.com/1").short_code == "ok1234"

    def test_generation_gives_up(self, settings, clock):
        settings.MAX_GENERATION_ATTEMPTS = 5
        registry = Registry(settings=settings, clock=clock, code_generator=lambda length: "same00")
        registry.create("https://example.com/1")
        with pytest.raises(CodeGenerationFailed):
            registry.create("https://example.com/2")
        assert len(registry) == 1

    def test_returns_copy(self, registry):
        link = registry.create("https://example.com/a", "copyme")
        link.click_count = 99
        assert registry.get("copyme").click_count == 0


class TestCreateMany:
    def test_creates_all_in_order(self, registry, sample_urls):
        created = registry.create_many([LinkCreate(original_url=url) for url in sample_urls])
        assert [link.original_url for link in created] == sample_urls
        assert [link.short_code for link in registry.list()] == [link.short_code for link in created]

    def test_mixed_custom_and_generated(self, registry):
        created = registry.create_many(
            [
                LinkCreate(original_url="https://example.com/1", custom_code="first"),
                LinkCreate(original_url="https://example.com/2", validity_minutes=5),
            ]
        )
        assert created[0].short_code == "first"
        assert created[1].expires_at - created[1].created_at == timedelta(minutes=5)

    def test_invalid_item_rejects_batch(self, registry):
        with pytest.raises(InvalidUrl):
            registry.create_many(
                [
                    LinkCreate(original_url="https://example.com/1"),
                    LinkCreate(original_url="nope"),
                ]
            )
        assert len(registry) == 0

    def test_duplicate_custom_code_in_batch(self, registry):
        with pytest.raises(ShortCodeTaken):
            registry.create_many(
                [
                    LinkCreate(original_url="https://example.com/1", custom_code="twice"),
                    LinkCreate(original_url="https://example.com/2", custom_code="twice"),
                ]
            )
        assert len(registry) == 0

    def test_code_taken_by_existing_record(self, registry):
        registry.create("https://example.com/0", "exists")
        with pytest.raises(ShortCodeTaken):
            registry.create_many(
                [
                    LinkCreate(original_url="https://example.com/1"),
                    LinkCreate(original_url="https://example.com/2", custom_code="exists"),
                ]
            )
        assert len(registry) == 1


class TestResolve:
    def test_records_click(self, registry, clock):
        link = registry.create("https://example.com/a")
        clock.advance(minutes=1)
        resolved = registry.resolve(link.short_code, "https://referrer.example", "Chicago")
        assert resolved.click_count == 1
        assert len(resolved.click_log) == 1
        event = resolved.click_log[0]
        assert event.timestamp == clock.now
        assert event.source_origin == "https://referrer.example"
        assert event.coarse_location == "Chicago"

    def test_default_click_context(self, registry):
        link = registry.create("https://example.com/a")
        event = registry.resolve(link.short_code).click_log[0]
        assert event.source_origin == "Direct"
        assert event.coarse_location == "Unknown"

    def test_counts_every_click(self, registry):
        link = registry.create("https://example.com/a")
        for _ in range(5):
            registry.resolve(link.short_code)
        stored = registry.get(link.short_code)
        assert stored.click_count == 5
        assert len(stored.click_log) == 5

    def test_not_found(self, registry):
        with pytest.raises(NotFound):
            registry.resolve("nothere")

    def test_expired(self, registry, clock):
        link = registry.create("https://example.com/a", None, 1)
        clock.advance(minutes=1, seconds=1)
        with pytest.raises(Expired):
            registry.resolve(link.short_code)
        stored = registry.get(link.short_code)
        assert stored.click_count == 0
        assert stored.click_log == []

    def test_still_active_at_expiry_instant(self, registry, clock):
        link = registry.create("https://example.com/a", None, 1)
        clock.advance(minutes=1)
        assert registry.resolve(link.short_code).click_count == 1

    def test_is_case_sensitive(self, registry):
        registry.create("https://example.com/a", "CaseCode")
        with pytest.raises(NotFound):
            registry.resolve("casecode")


class TestReads:
    def test_list_in_creation_order(self, registry, clock):
        codes = []
        for i in range(4):
            codes.append(registry.create(f"https://example.com/{i}").short_code)
            clock.advance(seconds=1)
        assert [link.short_code for link in registry.list()] == codes

    def test_list_includes_expired(self, registry, clock):
        registry.create("https://example.com/a", None, 1)
        registry.create("https://example.com/b", None, 60)
        clock.advance(minutes=2)
        assert len(registry.list()) == 2

    def test_list_is_a_snapshot(self, registry):
        link = registry.create("https://example.com/a")
        snapshot = registry.list()
        registry.resolve(link.short_code)
        snapshot[0].click_log.clear()
        assert snapshot[0].click_count == 0
        assert registry.get(link.short_code).click_count == 1
        assert len(registry.get(link.short_code).click_log) == 1

    def test_get_does_not_count(self, registry):
        link = registry.create("https://example.com/a")
        registry.get(link.short_code)
        assert registry.get(link.short_code).click_count == 0

    def test_get_not_found(self, registry):
        with pytest.raises(NotFound):
            registry.get("missing")

    def test_summary(self, registry, clock):
        first = registry.create("https://example.com/a", None, 1)
        second = registry.create("https://example.com/b", None, 60)
        registry.resolve(first.short_code)
        registry.resolve(second.short_code)
        registry.resolve(second.short_code)
        clock.advance(minutes=2)
        summary = registry.summary()
        assert summary.total == 2
        assert summary.active == 1
        assert summary.expired == 1
        assert summary.total_clicks == 3


class TestPurge:
    def test_purge_single(self, registry):
        link = registry.create("https://example.com/a")
        assert registry.purge(link.short_code) is True
        assert registry.purge(link.short_code) is False
        with pytest.raises(NotFound):
            registry.resolve(link.short_code)

    def test_purge_expired_exact_set(self, registry, clock):
        short = registry.create("https://example.com/short", None, 1)
        medium = registry.create("https://example.com/medium", None, 10)
        long = registry.create("https://example.com/long", None, 60)
        clock.advance(minutes=11)

        assert registry.purge_expired() == 2
        remaining = registry.list()
        assert [link.short_code for link in remaining] == [long.short_code]
        for link in (short, medium):
            with pytest.raises(NotFound):
                registry.get(link.short_code)

    def test_purge_expired_idempotent(self, registry, clock):
        registry.create("https://example.com/a", None, 1)
        clock.advance(minutes=2)
        assert registry.purge_expired() == 1
        assert registry.purge_expired() == 0

    def test_purge_expired_nothing_expired(self, registry):
        registry.create("https://example.com/a")
        assert registry.purge_expired() == 0
        assert len(registry) == 1

    def test_purge_all(self, registry, sample_urls):
        for url in sample_urls:
            registry.create(url)
        assert registry.purge_all() == 3
        assert registry.list() == []


class TestStorageFailures:
    def test_failed_create_commits_nothing(self, failing_store, settings, clock):
        registry = Registry(store=failing_store, settings=settings, clock=clock)
        with pytest.raises(StorageError):
            registry.create("https://example.com/a", "mycode")
        assert len(registry) == 0

    def test_failed_click_counts_nothing(self, registry, failing_store):
        registry.create("https://example.com/a", "mycode")
        registry._store = failing_store
        with pytest.raises(StorageError):
            registry.resolve("mycode")
        assert registry.get("mycode").click_count == 0

    def test_failed_purge_keeps_records(self, registry, failing_store, clock):
        registry.create("https://example.com/a", None, 1)
        clock.advance(minutes=2)
        registry._store = failing_store
        with pytest.raises(StorageError):
            registry.purge_expired()
        with pytest.raises(StorageError):
            registry.purge_all()
        assert len(registry) == 1

    def test_failed_batch_is_rolled_back(self, settings, clock):
        store = FailsOnSecondAdd.from_url("sqlite://")
        registry = Registry(store=store, settings=settings, clock=clock)
        with pytest.raises(StorageError):
            registry.create_many(
                [LinkCreate(original_url=f"https://example.com/{i}") for i in range(3)]
            )
        assert len(registry) == 0
        assert store.load_all() == []

    def test_failed_rollback_keeps_registry_and_store_in_step(self, settings, clock):
        class NoDeletes(FailsOnSecondAdd):
            def delete_many(self, links):
                raise StorageError("disk full")

        store = NoDeletes.from_url("sqlite://")
        registry = Registry(store=store, settings=settings, clock=clock)
        with pytest.raises(StorageError):
            registry.create_many(
                [
                    LinkCreate(original_url="https://example.com/1", custom_code="kept"),
                    LinkCreate(original_url="https://example.com/2"),
                ]
            )
        assert [link.short_code for link in registry.list()] == ["kept"]
        assert [link.short_code for link in store.load_all()] == ["kept"]
