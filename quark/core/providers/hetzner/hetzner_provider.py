import asyncio
import ipaddress
from dataclasses import dataclass, replace
from enum import StrEnum

from hcloud import APIException, Client
from hcloud.images import Image
from hcloud.locations import Location
from hcloud.server_types import ServerType
from hcloud.servers import BoundServer, ServerCreatePublicNetwork
from hcloud.ssh_keys import SSHKey
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from quark.core.exceptions import NotFoundError, ProviderError, ResourceUnavailableError, ValidationError
from quark.core.providers.base_provider import CloudProvider
from quark.core.providers.models import ClusterInfo, ClusterInstance, ClusterInstanceInfo, ClusterInstanceList
from quark.core.providers.options import CreateClusterOptions, CreateInstanceOptions, InstanceConfig
from quark.core.template_loader import template_loader

CLUSTER_LABEL = 'quark-cluster'
VPN_ADDRESS_LABEL = 'quark-vpn-address'
DEFAULT_IMAGE = 'ubuntu-22.04'
DEFAULT_USER_NAME = 'root'


class HetznerNodeType(StrEnum):
    CX22 = "cx22"
    CX32 = "cx32"
    CX42 = "cx42"
    CX52 = "cx52"


class HetznerRegion(StrEnum):
    FSN1 = "fsn1"
    NBG1 = "nbg1"
    HEL1 = "hel1"


@dataclass
class HetznerConfig:
    api_token: str


class HetznerProvider(CloudProvider):
    name = 'hetzner'

    def __init__(self, config: HetznerConfig, client: Client | None = None) -> None:
        self.client = client or Client(token=config.api_token)

        self._config = config

        super().__init__()

    def apply_cluster_defaults(self, options: CreateClusterOptions) -> CreateClusterOptions:
        options.instance_config = self._with_instance_defaults(options.instance_config)

        return options

    def apply_instance_defaults(self, options: CreateInstanceOptions) -> CreateInstanceOptions:
        options.instance_config = self._with_instance_defaults(options.instance_config)

        return options

    @staticmethod
    def _with_instance_defaults(config: InstanceConfig) -> InstanceConfig:
        return replace(
            config,
            image=config.image or DEFAULT_IMAGE,
            region=config.region or HetznerRegion.FSN1,
            type=config.type or HetznerNodeType.CX22,
        )

    def _to_cluster_instance(self, server: BoundServer) -> ClusterInstance:
        public_ipv4 = server.public_net.ipv4.ip if server.public_net and server.public_net.ipv4 else ''
        public_ipv6 = ''

        if server.public_net and server.public_net.ipv6:
            # Hetzner hands out a /64, the host itself listens on the first address.
            public_ipv6 = str(ipaddress.ip_network(server.public_net.ipv6.ip).network_address + 1)

        private_ip = server.private_net[0].ip if server.private_net else public_ipv4

        return ClusterInstance(
            id=str(server.id),
            name=server.name,
            private_ip=private_ip,
            public_ipv4=public_ipv4,
            public_ipv6=public_ipv6,
            vpn_address=(server.labels or {}).get(VPN_ADDRESS_LABEL, ''),
            user_name=DEFAULT_USER_NAME,
        )

    async def _get_ssh_keys(self, names: list[str]) -> list[SSHKey]:
        keys = []

        for name in names:
            key = await asyncio.to_thread(self.client.ssh_keys.get_by_name, name)

            if key is None:
                raise ValidationError(f'SSH key "{name}" not found at {self.name}')

            keys.append(key)

        return keys

    async def _wait_until_server_is_running(self, server_id: int) -> BoundServer:
        while True:
            server = await asyncio.to_thread(self.client.servers.get_by_id, server_id)

            if server.status == 'running':
                self._logger.info(f'Server {server.name} is running.')
                return server

            self._logger.info(f'Server {server.name} not ready yet, status: {server.status}')
            await asyncio.sleep(2)

    @retry(retry=retry_if_exception_type(ResourceUnavailableError), wait=wait_fixed(5), stop=stop_after_attempt(5), reraise=True)
    async def create_instance(self, options: CreateInstanceOptions) -> ClusterInstance:
        self._logger.info(f'Creating server {options.instance_name} ({options.instance_config})...')

        labels = {CLUSTER_LABEL: options.cluster_name}

        if options.vpn_address:
            labels[VPN_ADDRESS_LABEL] = options.vpn_address

        user_data = template_loader.render_template(
            template_name='cloud-config.yml',
            template_module='cloud-init',
            values=options.cloud_config_values(),
        )

        ssh_keys = await self._get_ssh_keys(options.ssh_key_names)

        try:
            response = await asyncio.to_thread(
                self.client.servers.create,
                name=options.instance_name,
                server_type=ServerType(name=options.instance_config.type),
                image=Image(name=options.instance_config.image),
                location=Location(name=options.instance_config.region),
                user_data=user_data,
                ssh_keys=ssh_keys,
                labels=labels,
                public_net=ServerCreatePublicNetwork(
                    enable_ipv4=not options.instance_config.no_public_ipv4, enable_ipv6=True
                ),
            )
        except APIException as e:
            if e.code == 'uniqueness_error':
                self._logger.warning(f'Server with name "{options.instance_name}" already exists')
                raise ProviderError(f'Server "{options.instance_name}" already exists') from e
            if e.code == 'resource_unavailable':
                self._logger.warning(f'Resources for server "{options.instance_name}" unavailable, retrying...')
                raise ResourceUnavailableError(f'Resource {options.instance_name} unavailable') from e

            raise ProviderError(f'Failed to create server "{options.instance_name}"') from e

        server = await self._wait_until_server_is_running(response.server.id)

        self._logger.info(f'Created server {server.name=}, IP={server.public_net.ipv4.ip if server.public_net.ipv4 else None}')

        return self._to_cluster_instance(server)

    async def get_instances(self, info: ClusterInfo) -> ClusterInstanceList:
        try:
            servers = await asyncio.to_thread(self.client.servers.get_all)
        except APIException as e:
            raise ProviderError(f'Failed to list servers of {info}') from e

        return ClusterInstanceList(
            self._to_cluster_instance(x) for x in servers if x.name.endswith(info.suffix)
        )

    async def delete_instance(self, info: ClusterInstanceInfo) -> None:
        name = str(info)

        try:
            server = await asyncio.to_thread(self.client.servers.get_by_name, name)

            if server is None:
                raise NotFoundError(f'Server "{name}" not found')

            await asyncio.to_thread(server.delete)
        except APIException as e:
            if e.code == 'not_found':
                self._logger.warning(f'Server "{name}" already deleted')
                return

            raise ProviderError(f'Failed to delete server "{name}"') from e

        self._logger.info(f'Removed server {name}')

    async def list_regions(self) -> list[str]:
        locations = await asyncio.to_thread(self.client.locations.get_all)

        return sorted(x.name for x in locations)

    async def list_images(self) -> list[str]:
        images = await asyncio.to_thread(self.client.images.get_all, type='system')

        return sorted(x.name for x in images if x.name)

    async def list_keys(self) -> list[str]:
        keys = await asyncio.to_thread(self.client.ssh_keys.get_all)

        return sorted(x.name for x in keys)

    async def list_instance_types(self) -> list[str]:
        server_types = await asyncio.to_thread(self.client.server_types.get_all)

        return sorted(x.name for x in server_types)
