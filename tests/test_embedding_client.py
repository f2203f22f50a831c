"""Tests for the retrying, rate-limited embedding client."""

import asyncio

import pytest

from onescript.embeddings.client import EmbeddingClient, is_retryable
from onescript.embeddings.rate_limiter import RateLimiter
from onescript.errors import (
    ConfigurationError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)

from .helpers import FakeProvider, make_vector


def rate_limited():
    return TransientProviderError("Fake API error 429: quota exhausted", status_code=429)


def build_client(settings, provider, fake_sleep, api_key="test-key"):
    limiter = RateLimiter(min_delay=settings.min_request_delay, sleep=fake_sleep)
    return EmbeddingClient(
        provider,
        limiter,
        settings,
        api_key=api_key,
        sleep=fake_sleep,
        jitter=lambda low, high: 0.5,
    )


async def test_returns_vector_from_single_call(settings, fake_sleep):
    provider = FakeProvider()
    client = build_client(settings, provider, fake_sleep)

    vector = await client.generate_embedding("hello world")

    assert len(vector) == 768
    assert provider.calls == [("hello world", "test-key")]


async def test_missing_credential_fails_before_network(settings, fake_sleep, monkeypatch):
    monkeypatch.delenv("ONESCRIPT_GOOGLE_API_KEY", raising=False)
    provider = FakeProvider()
    client = build_client(settings, provider, fake_sleep, api_key=None)

    with pytest.raises(ConfigurationError):
        await client.generate_embedding("hello")
    assert provider.calls == []


async def test_credential_is_read_on_every_call(settings, fake_sleep, monkeypatch):
    provider = FakeProvider()
    client = build_client(settings, provider, fake_sleep, api_key=None)

    monkeypatch.setenv("ONESCRIPT_GOOGLE_API_KEY", "first")
    await client.generate_embedding("a")
    monkeypatch.setenv("ONESCRIPT_GOOGLE_API_KEY", "second")
    await client.generate_embedding("b")

    assert [key for _, key in provider.calls] == ["first", "second"]


async def test_always_rate_limited_gives_up_after_five_attempts(settings, fake_sleep):
    provider = FakeProvider([rate_limited() for _ in range(10)])
    client = build_client(settings, provider, fake_sleep)

    with pytest.raises(ProviderError) as excinfo:
        await client.generate_embedding("x")

    assert len(provider.calls) == 5
    assert not isinstance(excinfo.value, TransientProviderError)
    assert "quota exhausted" in str(excinfo.value)
    assert excinfo.value.status_code == 429
    assert isinstance(excinfo.value.__cause__, TransientProviderError)

    # Four backoff waits between five attempts, then the queue's own delay.
    backoffs = fake_sleep.durations[:4]
    assert backoffs == [1.5, 2.5, 4.5, 8.5]
    for i, wait in enumerate(backoffs):
        assert wait >= 2 ** i * settings.backoff_base
    assert fake_sleep.durations[4:] == [settings.min_request_delay]


async def test_service_unavailable_then_success(settings, fake_sleep):
    unavailable = TransientProviderError("Fake API error 503", status_code=503)
    provider = FakeProvider([unavailable, make_vector(0.2)])
    client = build_client(settings, provider, fake_sleep)

    vector = await client.generate_embedding("x")

    assert vector == make_vector(0.2)
    assert len(provider.calls) == 2
    assert fake_sleep.durations[0] == 1.5


async def test_permanent_error_is_not_retried(settings, fake_sleep):
    bad_request = PermanentProviderError("Fake API error 400: bad input", status_code=400)
    provider = FakeProvider([bad_request])
    client = build_client(settings, provider, fake_sleep)

    with pytest.raises(PermanentProviderError) as excinfo:
        await client.generate_embedding("x")

    assert excinfo.value is bad_request
    assert len(provider.calls) == 1
    assert fake_sleep.durations == [settings.min_request_delay]


async def test_unknown_error_is_wrapped_as_permanent(settings, fake_sleep):
    provider = FakeProvider([ValueError("bad payload")])
    client = build_client(settings, provider, fake_sleep)

    with pytest.raises(PermanentProviderError, match="bad payload"):
        await client.generate_embedding("x")
    assert len(provider.calls) == 1


async def test_429_marker_in_message_is_retried(settings, fake_sleep):
    provider = FakeProvider([RuntimeError("HTTP 429 Too Many Requests"), make_vector()])
    client = build_client(settings, provider, fake_sleep)

    await client.generate_embedding("x")

    assert len(provider.calls) == 2


async def test_retries_hold_the_queue_slot(settings, fake_sleep):
    provider = FakeProvider([rate_limited(), rate_limited(), make_vector(), make_vector()])
    client = build_client(settings, provider, fake_sleep)

    await asyncio.gather(client.generate_embedding("first"), client.generate_embedding("second"))

    texts = [text for text, _ in provider.calls]
    assert texts == ["first", "first", "first", "second"]


def test_is_retryable():
    assert is_retryable(rate_limited())
    assert is_retryable(ProviderError("gateway", status_code=503))
    assert is_retryable(RuntimeError("got 429"))
    assert not is_retryable(PermanentProviderError("429 in text but permanent"))
    assert not is_retryable(RuntimeError("401 unauthorized"))


def test_backoff_delay_grows_exponentially(settings, fake_sleep):
    client = build_client(settings, FakeProvider(), fake_sleep)
    assert [client.backoff_delay(i) for i in range(5)] == [1.5, 2.5, 4.5, 8.5, 16.5]
