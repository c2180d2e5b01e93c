import asyncio

from booth.core.cache import MemoryCache, get_cache
from booth.core.guardrails import DEFAULT_TRIGGERS, ContentInspector, get_inspector
from booth.core.ratelimit import check_rate_limit


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_fixed_window_counts_and_resets():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)

    async def scenario():
        assert await cache.incr_window("ip:route", 60) == (1, 1060.0)
        assert await cache.incr_window("ip:route", 60) == (2, 1060.0)
        assert await cache.incr_window("other", 60) == (1, 1060.0)
        clock.now = 1060.0
        assert await cache.incr_window("ip:route", 60) == (1, 1120.0)

    asyncio.run(scenario())


def test_check_rate_limit_remaining():
    cache = MemoryCache(clock=FakeClock())

    async def scenario():
        results = [await check_rate_limit(cache, "k", 2, 60) for _ in range(3)]
        assert [(allowed, remaining) for allowed, remaining, _ in results] == [
            (True, 1), (True, 0), (False, 0),
        ]

    asyncio.run(scenario())


def test_add_is_set_if_absent_with_ttl():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)

    async def scenario():
        assert await cache.add("sig:abc", 600) is True
        assert await cache.add("sig:abc", 600) is False
        clock.now += 599
        assert await cache.add("sig:abc", 600) is False
        clock.now += 2
        assert await cache.add("sig:abc", 600) is True

    asyncio.run(scenario())


def test_discard_releases_key():
    cache = MemoryCache(clock=FakeClock())

    async def scenario():
        assert await cache.add("body:123", 600) is True
        await cache.discard("body:123")
        assert await cache.add("body:123", 600) is True
        await cache.discard("never-added")

    asyncio.run(scenario())


def test_memory_cache_is_default_singleton():
    assert isinstance(get_cache(), MemoryCache)
    assert get_cache() is get_cache()


def test_inspector_matches_case_insensitively():
    inspector = ContentInspector(["Globex", " ", ""])
    assert inspector.triggers == ("globex",)

    result = inspector.inspect("Have you tried GLOBEX?")
    assert result.allowed is False
    assert result.matched == ["globex"]
    assert inspector.inspect("Rockets!").allowed is True


def test_inspector_only_reads_persona_turns():
    inspector = ContentInspector(["globex"])
    transcript = [
        {"role": "user", "content": "Is Globex cheaper?"},
        {"role": "assistant", "content": "Let's focus on Acme."},
    ]
    assert inspector.inspect_transcript(transcript).allowed is True
    assert inspector.inspect_transcript(transcript + ["globex wins"]).allowed is False


def test_default_triggers(env):
    assert get_inspector().triggers == DEFAULT_TRIGGERS
    env.setenv("GUARDRAIL_TRIGGERS", "a,b")
    from booth.core.config import get_settings
    get_settings.cache_clear()
    assert get_inspector().triggers == ("a", "b")
