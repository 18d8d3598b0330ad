import asyncio

import pytest

from kuberesolver.backoff import BackoffConfig, create_backoff
from kuberesolver.config import DeletePolicy
from kuberesolver.errors import ResolverClosedError
from kuberesolver.resolver import KubeResolver, ResolverState
from kuberesolver.sources.callback import CallbackChangeSource
from kuberesolver.target import parse_target

TARGET = "kubernetes://test-namespace/service:8080"


async def _wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def source():
    return CallbackChangeSource()


@pytest.fixture
def make_resolver(source, consumer, metrics):
    def _make(target=TARGET, consumer=consumer, **kwargs):
        descriptor = parse_target(target)
        kwargs.setdefault(
            "backoff", create_backoff(BackoffConfig(base_delay=0.01, max_delay=0.05, jitter=False))
        )
        return KubeResolver(descriptor, source, consumer, metrics.for_target(str(descriptor)), **kwargs)

    return _make


def _sample(registry, name, target=TARGET):
    return registry.get_sample_value(name, {"target": target})


@pytest.mark.asyncio
async def test_initial_snapshot_is_published(source, make_resolver, consumer, resource_key, make_endpoints, registry):
    await source.on_add(resource_key, make_endpoints(addresses=("2.2.2.2", "1.1.1.1")))
    resolver = make_resolver()
    resolver.start()

    assert await consumer.next_publish() == ["1.1.1.1:8080", "2.2.2.2:8080"]
    assert resolver.state is ResolverState.WATCHING
    assert [a.address for a in resolver.addresses] == ["1.1.1.1:8080", "2.2.2.2:8080"]
    assert _sample(registry, "kuberesolver_addresses_total") == 2
    assert _sample(registry, "kuberesolver_endpoints_total") == 1
    await resolver.close()


@pytest.mark.asyncio
async def test_nothing_published_before_first_snapshot(make_resolver, consumer):
    resolver = make_resolver()
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    await asyncio.sleep(0.05)

    assert consumer.published == []
    await resolver.close()


@pytest.mark.asyncio
async def test_unchanged_snapshot_is_not_republished(source, make_resolver, consumer, resource_key, make_endpoints):
    resolver = make_resolver()
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)

    await source.on_add(resource_key, make_endpoints(resource_version="1"))
    await consumer.next_publish()
    await source.on_update(resource_key, None, make_endpoints(resource_version="2"))
    await asyncio.sleep(0.05)

    assert len(consumer.published) == 1
    await resolver.close()


@pytest.mark.asyncio
async def test_deleted_resource_publishes_empty_list(source, make_resolver, consumer, resource_key, make_endpoints):
    resolver = make_resolver()
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)

    await source.on_add(resource_key, make_endpoints())
    assert await consumer.next_publish() == ["1.1.1.1:8080", "2.2.2.2:8080"]
    await source.on_delete(resource_key)

    assert await consumer.next_publish() == []
    assert resolver.addresses == []
    await resolver.close()


@pytest.mark.asyncio
async def test_retain_policy_keeps_addresses_on_delete(source, make_resolver, consumer, resource_key, make_endpoints):
    resolver = make_resolver(delete_policy=DeletePolicy.RETAIN)
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)

    await source.on_add(resource_key, make_endpoints())
    await consumer.next_publish()
    await source.on_delete(resource_key)
    await asyncio.sleep(0.05)

    assert len(consumer.published) == 1
    assert len(resolver.addresses) == 2
    await resolver.close()


@pytest.mark.asyncio
async def test_disconnect_keeps_addresses_until_fresh_snapshot(
    source, make_resolver, consumer, resource_key, make_endpoints, registry
):
    resolver = make_resolver()
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    await source.on_add(resource_key, make_endpoints())
    await consumer.next_publish()

    source.end_subscription(resource_key)
    await _wait_for(lambda: _sample(registry, "kuberesolver_resyncs_total") == 1)
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    await asyncio.sleep(0.05)

    assert consumer.published == [["1.1.1.1:8080", "2.2.2.2:8080"]]
    assert len(resolver.addresses) == 2
    await resolver.close()


@pytest.mark.asyncio
async def test_changes_during_outage_arrive_after_resync(
    source, make_resolver, consumer, resource_key, make_endpoints
):
    resolver = make_resolver(
        backoff=create_backoff(BackoffConfig(base_delay=0.2, max_delay=0.2, jitter=False))
    )
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    await source.on_add(resource_key, make_endpoints())
    await consumer.next_publish()

    source.end_subscription(resource_key)
    await _wait_for(lambda: resolver.state is ResolverState.RESYNCING)
    await source.on_update(resource_key, None, make_endpoints(addresses=("3.3.3.3",), resource_version="2"))

    assert await consumer.next_publish() == ["3.3.3.3:8080"]
    await resolver.close()


@pytest.mark.asyncio
async def test_resolve_now_resubscribes(source, make_resolver, consumer, resource_key, make_endpoints, registry):
    resolver = make_resolver(
        backoff=create_backoff(BackoffConfig(base_delay=60.0, max_delay=60.0, jitter=False))
    )
    resolver.resolve_now()
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    await source.on_add(resource_key, make_endpoints())
    await consumer.next_publish()

    resolver.resolve_now()

    await _wait_for(lambda: _sample(registry, "kuberesolver_resyncs_total") == 1)
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING, timeout=1.0)
    await resolver.close()


@pytest.mark.asyncio
async def test_no_publish_after_close(source, make_resolver, consumer, resource_key, make_endpoints):
    resolver = make_resolver()
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    await source.on_add(resource_key, make_endpoints())
    await consumer.next_publish()

    await resolver.close()
    await source.on_update(resource_key, None, make_endpoints(addresses=("9.9.9.9",), resource_version="2"))
    await asyncio.sleep(0.05)

    assert resolver.state is ResolverState.CLOSED
    assert len(consumer.published) == 1
    with pytest.raises(ResolverClosedError):
        resolver.start()


@pytest.mark.asyncio
async def test_close_during_backoff_returns_promptly(source, make_resolver, resource_key):
    resolver = make_resolver(
        backoff=create_backoff(BackoffConfig(base_delay=60.0, max_delay=60.0, jitter=False))
    )
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    source.end_subscription(resource_key)
    await _wait_for(lambda: resolver.state is ResolverState.RESYNCING)

    await asyncio.wait_for(resolver.close(), timeout=1.0)

    assert resolver.state is ResolverState.CLOSED


@pytest.mark.asyncio
async def test_consumer_failure_triggers_resync(source, make_resolver, resource_key, make_endpoints):
    calls = []

    async def flaky(addresses):
        calls.append([a.address for a in addresses])
        if len(calls) == 1:
            raise RuntimeError("consumer exploded")

    resolver = make_resolver(consumer=flaky)
    await source.on_add(resource_key, make_endpoints())
    resolver.start()

    await _wait_for(lambda: len(calls) == 2)

    assert calls[0] == calls[1]
    assert len(resolver.addresses) == 2
    await resolver.close()


@pytest.mark.asyncio
async def test_sync_callable_consumer(source, make_resolver, resource_key, make_endpoints):
    published = []
    resolver = make_resolver(consumer=lambda addresses: published.append(addresses))
    await source.on_add(resource_key, make_endpoints(addresses=("1.1.1.1",)))
    resolver.start()

    await _wait_for(lambda: published)

    assert published[0][0].address == "1.1.1.1:8080"
    assert published[0][0].server_name == "service.test-namespace"
    await resolver.close()


@pytest.mark.asyncio
async def test_error_events_do_not_publish(source, make_resolver, consumer, resource_key, make_endpoints):
    resolver = make_resolver()
    resolver.start()
    await _wait_for(lambda: resolver.state is ResolverState.WATCHING)
    await source.on_add(resource_key, make_endpoints())
    await consumer.next_publish()

    await source.on_error(resource_key, "too old resource version", 410)
    await asyncio.sleep(0.05)

    assert len(consumer.published) == 1
    assert resolver.state is ResolverState.WATCHING
    await resolver.close()


@pytest.mark.asyncio
async def test_groups_without_named_port_are_counted(source, make_resolver, consumer, resource_key, make_endpoints, registry):
    target = "kubernetes://test-namespace/service:grpc"
    resolver = make_resolver(target=target)
    await source.on_add(resource_key, make_endpoints(ports=(("http", 8080),)))
    resolver.start()
    await _wait_for(lambda: _sample(registry, "kuberesolver_skipped_groups_total", target) == 1)

    assert consumer.published == []
    await resolver.close()
