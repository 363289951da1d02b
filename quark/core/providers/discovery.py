import httpx

from quark.core.exceptions import ProviderError
from quark.core.utils import setup_logger

ETCD_DISCOVERY_URL = 'https://discovery.etcd.io/new'

logger = setup_logger('EtcdDiscovery')


async def new_discovery_url(size: int, timeout: float | None = 30.0) -> str:
    """Ask the public etcd discovery service for a fresh token sized for ``size`` peers."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(ETCD_DISCOVERY_URL, params={'size': size})
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.exception(f'Failed to get etcd discovery URL: {e}', exc_info=False)
        raise ProviderError('Failed to get etcd discovery URL') from e

    url = response.text.strip()

    logger.info(f'Created etcd discovery URL {url}')

    return url
