"""
Tests for backoff, settings, logging and metrics helpers.
"""

import io
import json
import logging

import pytest

from kuberesolver.backoff import (
    BackoffConfig,
    BackoffStrategy,
    ConstantBackoff,
    ExponentialBackoff,
    create_backoff,
)
from kuberesolver.config import ChangeSourceKind, DeletePolicy, ResolverSettings
from kuberesolver.observability.logging import configure_logging, current_target
from kuberesolver.observability.metrics import ResolverMetrics


class TestBackoff:
    def test_exponential_growth_is_capped(self):
        backoff = ExponentialBackoff(BackoffConfig(base_delay=1.0, max_delay=5.0, jitter=False))

        assert [backoff.next_delay() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_reset_starts_over(self):
        backoff = create_backoff(BackoffConfig(base_delay=0.5, jitter=False))
        backoff.next_delay()
        backoff.next_delay()

        backoff.reset()

        assert backoff.next_delay() == 0.5

    def test_jitter_stays_within_factor(self):
        backoff = ExponentialBackoff(BackoffConfig(base_delay=10.0, jitter_factor=0.2))

        for _ in range(50):
            assert 8.0 <= backoff.calculate_delay(1) <= 12.0

    def test_constant_strategy(self):
        backoff = create_backoff(BackoffConfig(strategy=BackoffStrategy.CONSTANT, base_delay=3.0, jitter=False))

        assert isinstance(backoff, ConstantBackoff)
        assert backoff.next_delay() == backoff.next_delay() == 3.0


class TestSettings:
    def test_defaults(self):
        settings = ResolverSettings()

        assert settings.scheme == "kubernetes"
        assert settings.change_source is ChangeSourceKind.REFLECTOR
        assert settings.delete_policy is DeletePolicy.CLEAR
        assert settings.default_namespace == "default"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("KUBERESOLVER_CHANGE_SOURCE", "stream")
        monkeypatch.setenv("KUBERESOLVER_DELETE_POLICY", "retain")
        monkeypatch.setenv("KUBERESOLVER_QUEUE_SIZE", "4")
        monkeypatch.setenv("KUBERESOLVER_LOG_LEVEL", "debug")

        settings = ResolverSettings()

        assert settings.change_source is ChangeSourceKind.STREAM
        assert settings.delete_policy is DeletePolicy.RETAIN
        assert settings.queue_size == 4
        assert settings.log_level == "DEBUG"

    def test_queue_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ResolverSettings(queue_size=0)

    def test_backoff_config(self):
        config = ResolverSettings(backoff_base_delay=0.5, backoff_max_delay=8.0).backoff_config()

        assert config.base_delay == 0.5
        assert config.max_delay == 8.0
        assert config.strategy is BackoffStrategy.EXPONENTIAL


class TestLogging:
    def test_text_format_carries_target(self):
        stream = io.StringIO()
        configure_logging(service_name="svc", log_level="debug", stream=stream)
        token = current_target.set("kubernetes://ns/service:80")
        try:
            logging.getLogger("kuberesolver.resolver").info("published %d addresses", 2)
        finally:
            current_target.reset(token)

        line = stream.getvalue()
        assert "[svc]" in line
        assert "[kubernetes://ns/service:80]" in line
        assert "published 2 addresses" in line

    def test_json_format(self):
        stream = io.StringIO()
        configure_logging(json_format=True, stream=stream)

        logging.getLogger("kuberesolver.differ").warning("skipped", extra={"groups": 3})

        entry = json.loads(stream.getvalue().strip())
        assert entry["level"] == "WARNING"
        assert entry["service"] == "kuberesolver"
        assert entry["logger"] == "kuberesolver.differ"
        assert entry["groups"] == 3

    def test_reconfiguring_replaces_handler(self):
        configure_logging()
        logger = configure_logging()

        assert len(logger.handlers) == 1

    def test_off_level_silences(self):
        stream = io.StringIO()
        configure_logging(log_level="OFF", stream=stream)

        logging.getLogger("kuberesolver").critical("nothing to see")

        assert stream.getvalue() == ""


class TestMetrics:
    def test_metrics_created_once_per_registry(self, registry):
        assert ResolverMetrics.for_registry(registry) is ResolverMetrics.for_registry(registry)

    def test_target_metrics(self, registry):
        target = ResolverMetrics.for_registry(registry).for_target("kubernetes://ns/svc:80")

        target.observe_publish(2, 5)
        target.record_skipped_groups(0)
        target.record_skipped_groups(1)
        target.record_resync()

        labels = {"target": "kubernetes://ns/svc:80"}
        assert registry.get_sample_value("kuberesolver_endpoints_total", labels) == 2
        assert registry.get_sample_value("kuberesolver_addresses_total", labels) == 5
        assert registry.get_sample_value("kuberesolver_skipped_groups_total", labels) == 1
        assert registry.get_sample_value("kuberesolver_resyncs_total", labels) == 1
