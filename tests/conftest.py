"""Pytest configuration and fixtures for installer tests."""

import pytest

from fakes import FakeCluster
from sentinel_installer import DEFAULT_FILTERS, InstallerSettings, KubeInstaller, ResourceCache


@pytest.fixture
def fake_cluster():
    """Empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def fast_settings():
    """Settings without retry or poll delays."""
    return InstallerSettings(
        _env_file=None,
        write_retry_attempts=3,
        write_retry_delay_seconds=0,
        write_retry_max_delay_seconds=0,
        crd_poll_delay_seconds=0,
        crd_poll_attempts=5,
        deployment_poll_delay_seconds=0,
        deployment_poll_attempts=10,
    )


@pytest.fixture
def owner_labels():
    """Labels of the install under test."""
    return {"installer.sentinel.io/owner": "test"}


@pytest.fixture
def make_installer(fake_cluster, fast_settings):
    """Factory building an installer over an initialized cache."""

    async def factory(*callbacks, cluster=None, settings=None):
        cluster = cluster or fake_cluster
        cache = ResourceCache()
        await cache.init(cluster, *DEFAULT_FILTERS)
        return KubeInstaller(cluster, cache, *callbacks, settings=settings or fast_settings)

    return factory
