"""Tests for ClientCache."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from pydantic import SecretStr

from fleetscout.cache import ClientCache, ClientCacheKey
from fleetscout.models import FreeScoutOptions, IntegrationKind
from fleetscout.providers.freescout import FreeScoutConfigError

VULN = ClientCacheKey(kind=IntegrationKind.VULN)
POLICY = ClientCacheKey(kind=IntegrationKind.FAILING_POLICY)
POLICY_TEAM_7 = ClientCacheKey(kind=IntegrationKind.FAILING_POLICY, team_id=7)

ALL_KEYS = [VULN, POLICY, POLICY_TEAM_7]


def test_key_str() -> None:
    assert str(VULN) == "vuln:"
    assert str(POLICY_TEAM_7) == "failing_policy:7"


@pytest.mark.parametrize("key", ALL_KEYS, ids=str)
def test_same_options_builds_once(key: ClientCacheKey, options: FreeScoutOptions, factory) -> None:
    cache = ClientCache(factory)
    first = cache.resolve(key, options)
    second = cache.resolve(key, options.model_copy())
    assert first is second
    assert len(factory.built) == 1


@pytest.mark.parametrize(
    "change",
    [
        {"url": "https://other.example.com"},
        {"api_token": SecretStr("rotated")},
        {"mailbox_id": 4},
        {"customer_email": "other@example.com"},
        {"assign_to": 15},
    ],
    ids=lambda c: next(iter(c)),
)
@pytest.mark.parametrize("key", ALL_KEYS, ids=str)
def test_changed_field_rebuilds_once(key: ClientCacheKey, change: dict, options: FreeScoutOptions, factory) -> None:
    cache = ClientCache(factory)
    cache.resolve(key, options)
    changed = options.model_copy(update=change)

    client = cache.resolve(key, changed)
    assert len(factory.built) == 2
    assert client.options == changed  # type: ignore[union-attr]

    # The cache now holds the new client.
    assert cache.resolve(key, changed) is client
    assert len(factory.built) == 2


@pytest.mark.parametrize("key", ALL_KEYS, ids=str)
def test_none_evicts(key: ClientCacheKey, options: FreeScoutOptions, factory) -> None:
    cache = ClientCache(factory)
    cache.resolve(key, options)
    assert key in cache

    assert cache.resolve(key, None) is None
    assert key not in cache

    # Rebuilt after re-enable.
    cache.resolve(key, options)
    assert len(factory.built) == 2


def test_none_on_empty_cache(factory) -> None:
    cache = ClientCache(factory)
    assert cache.resolve(VULN, None) is None
    assert len(cache) == 0
    assert factory.built == []


def test_none_only_evicts_its_own_key(options: FreeScoutOptions, factory) -> None:
    cache = ClientCache(factory)
    for key in ALL_KEYS:
        cache.resolve(key, options)
    cache.resolve(POLICY, None)
    assert VULN in cache
    assert POLICY_TEAM_7 in cache
    assert POLICY not in cache
    assert len(cache) == 2


def test_keys_are_independent(options: FreeScoutOptions, factory) -> None:
    cache = ClientCache(factory)
    a = cache.resolve(POLICY, options)
    b = cache.resolve(POLICY_TEAM_7, options)
    assert a is not b
    assert len(factory.built) == 2


def test_factory_error_leaves_cache_untouched(options: FreeScoutOptions, factory) -> None:
    cache = ClientCache(factory)
    original = cache.resolve(VULN, options)

    def broken(_: FreeScoutOptions):
        raise FreeScoutConfigError("invalid FreeScout URL")

    cache._factory = broken
    with pytest.raises(FreeScoutConfigError):
        cache.resolve(VULN, options.model_copy(update={"mailbox_id": 9}))

    cache._factory = factory
    assert cache.resolve(VULN, options) is original


def test_concurrent_resolve_builds_once(options: FreeScoutOptions, factory) -> None:
    cache = ClientCache(factory)
    barrier = threading.Barrier(8)

    def resolve():
        barrier.wait()
        return cache.resolve(POLICY_TEAM_7, options)

    with ThreadPoolExecutor(max_workers=8) as pool:
        clients = list(pool.map(lambda _: resolve(), range(8)))

    assert len(factory.built) == 1
    assert all(c is clients[0] for c in clients)
