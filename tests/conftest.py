from unittest.mock import AsyncMock, patch

import pytest

from quark.core.cluster_manager import ClusterManager
from quark.core.config import QuarkSettings
from tests.fakes import DISCOVERY_URL, FakeCloudProvider, FakeDnsProvider, FakeHostConnector


@pytest.fixture
def settings(tmp_path):
    return QuarkSettings(
        provider='fake',
        dns_provider='fakedns',
        domain='pulcy.com',
        ssh_key_names=['ops'],
        clusters_dir=tmp_path,
        provider_timeout=5,
    )


@pytest.fixture
def provider():
    return FakeCloudProvider()


@pytest.fixture
def dns_provider():
    return FakeDnsProvider()


@pytest.fixture
def connector():
    return FakeHostConnector()


@pytest.fixture
def cluster_manager(provider, dns_provider, connector, settings):
    return ClusterManager(provider=provider, dns_provider=dns_provider, connector=connector, settings=settings)


@pytest.fixture
def discovery():
    with patch('quark.core.cluster_manager.new_discovery_url', new=AsyncMock(return_value=DISCOVERY_URL)) as mock:
        yield mock
