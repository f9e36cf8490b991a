"""Tests for session persistence and concurrent updates."""

import threading
from dataclasses import dataclass, field

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from media_ingest.adapters.memory_session_store import InMemorySessionStore
from media_ingest.adapters.redis_session_store import RedisSessionStore
from media_ingest.domain.errors import ExternalFailure, NotFound, NotReady
from media_ingest.domain.sessions import (
    IngestionSession,
    SessionStatus,
    UploadStrategy,
    with_chunk,
)
from media_ingest.services.session_store import SessionStoreAdapter


def _new_session(total_chunks: int = 4) -> IngestionSession:
    return IngestionSession(
        id="session-1",
        source_name="a.mp4",
        source_size_bytes=1000,
        strategy=UploadStrategy.MULTIPART,
        total_chunks=total_chunks,
    )


def test_create_and_get_round_trip(sessions: SessionStoreAdapter) -> None:
    sessions.create(_new_session())

    loaded = sessions.get("session-1")

    assert loaded.status is SessionStatus.UPLOADING
    assert loaded.total_chunks == 4


def test_get_unknown_session_raises_not_found(sessions: SessionStoreAdapter) -> None:
    with pytest.raises(NotFound):
        sessions.get("missing")


def test_expired_session_is_not_found() -> None:
    sessions = SessionStoreAdapter(store=InMemorySessionStore(), ttl_seconds=0)
    sessions.create(_new_session())

    with pytest.raises(NotFound):
        sessions.get("session-1")


def test_writes_sweep_expired_sessions() -> None:
    store = InMemorySessionStore()
    for index in range(5):
        store.save(f"upload:abandoned-{index}", "{}", 0)

    store.save("upload:live", "{}", 7200)

    assert list(store._entries) == ["upload:live"]
    assert store.load("upload:live") == "{}"


def test_mutate_increments_version(sessions: SessionStoreAdapter) -> None:
    sessions.create(_new_session())

    updated = sessions.mutate("session-1", lambda s: with_chunk(s, 2))

    assert updated.version == 1
    assert sessions.get("session-1").completed_chunk_indices == [2]


def test_concurrent_chunk_records_lose_no_updates() -> None:
    sessions = SessionStoreAdapter(
        store=InMemorySessionStore(), ttl_seconds=7200, max_write_attempts=1000
    )
    sessions.create(_new_session(total_chunks=40))
    barrier = threading.Barrier(8)

    def record(indices: list[int]) -> None:
        barrier.wait()
        for index in indices:
            sessions.mutate("session-1", lambda s, i=index: with_chunk(s, i))

    threads = [
        threading.Thread(target=record, args=([*range(n, 40, 8), 0],))
        for n in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sessions.get("session-1").completed_chunk_indices == list(range(40))


def test_transition_rejects_illegal_edge(sessions: SessionStoreAdapter) -> None:
    sessions.create(_new_session())

    with pytest.raises(NotReady):
        sessions.transition("session-1", SessionStatus.ANALYZING)

    assert sessions.get("session-1").status is SessionStatus.UPLOADING


def test_mark_failed_overwrites_last_error(sessions: SessionStoreAdapter) -> None:
    sessions.create(_new_session())

    sessions.mark_failed("session-1", "first")
    failed = sessions.mark_failed("session-1", "second")

    assert failed.status is SessionStatus.FAILED
    assert failed.last_error == "second"


def test_leaving_failed_clears_last_error(sessions: SessionStoreAdapter) -> None:
    session = _new_session(total_chunks=1)
    sessions.create(session)
    sessions.mutate("session-1", lambda s: with_chunk(s, 0))
    sessions.mark_failed("session-1", "transcoder crashed")

    retried = sessions.transition("session-1", SessionStatus.PROCESSING)

    assert retried.status is SessionStatus.PROCESSING
    assert retried.last_error is None


@dataclass
class _FakePipeline:
    redis: "_FakeRedis"
    conflict: bool = False
    watched: bool = False
    queued: list[tuple[str, str, int]] = field(default_factory=list)

    def __enter__(self) -> "_FakePipeline":
        return self

    def __exit__(self, *_args: object) -> None:
        return None

    def watch(self, _key: str) -> None:
        self.watched = True

    def unwatch(self) -> None:
        self.watched = False

    def get(self, key: str) -> str | None:
        return self.redis.values.get(key)

    def multi(self) -> None:
        return None

    def set(self, key: str, value: str, ex: int) -> None:
        self.queued.append((key, value, ex))

    def execute(self) -> None:
        if self.conflict:
            raise WatchError("watched key changed")
        for key, value, ex in self.queued:
            self.redis.set(key, value, ex=ex)


@dataclass
class _FakeRedis:
    values: dict[str, str] = field(default_factory=dict)
    ttls: dict[str, int] = field(default_factory=dict)
    conflict_next: bool = False
    down: bool = False

    def get(self, key: str) -> str | None:
        self._check()
        return self.values.get(key)

    def set(self, key: str, value: str, ex: int) -> None:
        self._check()
        self.values[key] = value
        self.ttls[key] = ex

    def pipeline(self) -> _FakePipeline:
        self._check()
        conflict, self.conflict_next = self.conflict_next, False
        return _FakePipeline(redis=self, conflict=conflict)

    def ping(self) -> bool:
        return True

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")


def test_redis_store_compare_and_set_refreshes_ttl() -> None:
    redis = _FakeRedis()
    store = RedisSessionStore(client=redis)  # type: ignore[arg-type]
    store.save("upload:1", "v1", 60)

    assert store.compare_and_set("upload:1", "v1", "v2", 7200)
    assert redis.values["upload:1"] == "v2"
    assert redis.ttls["upload:1"] == 7200


def test_redis_store_detects_stale_and_raced_writes() -> None:
    redis = _FakeRedis()
    store = RedisSessionStore(client=redis)  # type: ignore[arg-type]
    store.save("upload:1", "v1", 60)

    assert not store.compare_and_set("upload:1", "stale", "v2", 60)
    redis.conflict_next = True
    assert not store.compare_and_set("upload:1", "v1", "v2", 60)
    assert redis.values["upload:1"] == "v1"


def test_adapter_retries_after_redis_conflict() -> None:
    redis = _FakeRedis()
    sessions = SessionStoreAdapter(
        store=RedisSessionStore(client=redis),  # type: ignore[arg-type]
        ttl_seconds=7200,
    )
    sessions.create(_new_session())
    redis.conflict_next = True

    updated = sessions.mutate("session-1", lambda s: with_chunk(s, 1))

    assert updated.completed_chunk_indices == [1]
    assert sessions.get("session-1").completed_chunk_indices == [1]


def test_unreachable_redis_raises_external_failure() -> None:
    redis = _FakeRedis()
    sessions = SessionStoreAdapter(
        store=RedisSessionStore(client=redis),  # type: ignore[arg-type]
        ttl_seconds=7200,
    )
    sessions.create(_new_session())
    redis.down = True

    with pytest.raises(ExternalFailure, match="unavailable"):
        sessions.get("session-1")
    with pytest.raises(ExternalFailure, match="unavailable"):
        sessions.mutate("session-1", lambda s: with_chunk(s, 1))
    with pytest.raises(ExternalFailure, match="unavailable"):
        sessions.create(_new_session())
