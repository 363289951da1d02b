from dataclasses import dataclass
from typing import Any

import httpx

from quark.core.exceptions import NotFoundError, ProviderError
from quark.core.providers.base_provider import DnsProvider, DnsRecord

CLOUDFLARE_API_URL = 'https://api.cloudflare.com/client/v4/'


@dataclass
class CloudflareConfig:
    api_token: str


class CloudflareDnsProvider(DnsProvider):
    name = 'cloudflare'

    def __init__(
        self, config: CloudflareConfig, transport: httpx.AsyncBaseTransport | None = None, timeout: float = 30
    ) -> None:
        self._config = config
        self._transport = transport
        self._timeout = timeout
        self._zone_ids: dict[str, str] = {}

        super().__init__()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=CLOUDFLARE_API_URL,
            headers={'Authorization': f'Bearer {self._config.api_token}'},
            transport=self._transport,
            timeout=self._timeout,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._logger.exception(
                f'Cloudflare returned an error status: {e.response.status_code} - {e.response.text}', exc_info=False
            )
            raise ProviderError(f'Cloudflare request {method} {url} failed') from e
        except httpx.RequestError as e:
            self._logger.exception(f'Network error when connecting to Cloudflare: {e}', exc_info=False)
            raise ProviderError(f'Cloudflare request {method} {url} failed') from e

        body = response.json()

        if not body.get('success', False):
            raise ProviderError(f"Cloudflare request {method} {url} failed: {body.get('errors')}")

        return body.get('result')

    async def _zone_id(self, domain: str) -> str:
        if domain not in self._zone_ids:
            zones = await self._request('GET', 'zones', params={'name': domain})

            for zone in zones or []:
                if zone['name'] == domain:
                    self._zone_ids[domain] = zone['id']
                    break
            else:
                raise NotFoundError(f'Domain {domain} not found at Cloudflare')

        return self._zone_ids[domain]

    async def list_records(self, domain: str) -> list[DnsRecord]:
        zone_id = await self._zone_id(domain)

        records = await self._request('GET', f'zones/{zone_id}/dns_records', params={'per_page': 1000})

        return [DnsRecord(type=x['type'], name=x['name'], data=x['content'], id=x['id']) for x in records or []]

    async def create_record(self, domain: str, record_type: str, name: str, data: str) -> None:
        zone_id = await self._zone_id(domain)

        self._logger.info(f'Creating {record_type} record {name} -> {data}')

        await self._request(
            'POST', f'zones/{zone_id}/dns_records', json={'type': record_type, 'name': name, 'content': data}
        )

    async def delete_records(self, domain: str, record_type: str, name: str, data: str = '') -> None:
        zone_id = await self._zone_id(domain)

        for record in await self.list_records(domain):
            if record.type != record_type or record.name != name:
                continue

            if data and record.data != data:
                continue

            self._logger.info(f'Deleting {record_type} record {name} -> {record.data}')

            await self._request('DELETE', f'zones/{zone_id}/dns_records/{record.id}')
