import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import replace
from typing import Any, TypeVar

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from quark.core.config import QuarkSettings
from quark.core.exceptions import (
    DeadlineExceededError,
    NotFoundError,
    QuarkError,
    RemoteExecutionError,
    ValidationError,
)
from quark.core.fanout import fan_out
from quark.core.membership import EtcdProxyPredicate, MembershipSynchronizer
from quark.core.mesh import MeshConfigurator
from quark.core.providers.base_provider import CloudProvider, DnsProvider
from quark.core.providers.connection import HostConnector, InstanceConnection, SSHHostConnector
from quark.core.providers.discovery import new_discovery_url
from quark.core.providers.members import ClusterMemberList
from quark.core.providers.models import ClusterInfo, ClusterInstance, ClusterInstanceInfo, ClusterInstanceList
from quark.core.providers.options import CreateClusterOptions, CreateInstanceOptions, os_version_key, vpn_address
from quark.core.providers.provider_factory import ProviderFactory
from quark.core.providers.registration import register_instance, unregister_instance
from quark.core.utils import generate_token, setup_logger

T = TypeVar('T')

CLUSTER_ID_LENGTH = 40

# min-os-version numbers are Container Linux releases
VERSIONED_OS_IDS = ('coreos', 'flatcar')


class ClusterManager:
    def __init__(
        self,
        provider: CloudProvider,
        dns_provider: DnsProvider,
        connector: HostConnector,
        settings: QuarkSettings | None = None,
    ) -> None:
        self._logger = setup_logger('ClusterManager')

        self._provider = provider
        self._dns_provider = dns_provider
        self._connector = connector
        self._settings = settings or QuarkSettings()

        self.membership = MembershipSynchronizer(connector, self._settings.members_service)
        self.mesh = MeshConfigurator(connector, self._settings.vpn_name)

    @classmethod
    def from_settings(cls, settings: QuarkSettings) -> 'ClusterManager':
        connector = SSHHostConnector(
            private_key_path=settings.ssh_private_key_path,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
        )

        return cls(
            provider=ProviderFactory.get_provider(settings),
            dns_provider=ProviderFactory.get_dns_provider(settings),
            connector=connector,
            settings=settings,
        )

    async def _provider_call(self, description: str, call: Coroutine[Any, Any, T]) -> T:
        timeout = self._settings.provider_timeout

        try:
            async with asyncio.timeout(timeout):
                return await call
        except TimeoutError as e:
            self._logger.exception(f'{description} did not finish within {timeout}s', exc_info=False)
            raise DeadlineExceededError(f'{description} did not finish within {timeout}s') from e

    @retry(
        retry=retry_if_exception_type((RemoteExecutionError, DeadlineExceededError)),
        wait=wait_fixed(5),
        stop=stop_after_attempt(60),
        reraise=True,
    )
    async def _wait_until_reachable(self, instance: ClusterInstance) -> str:
        async with self._connector.connect(instance) as connection:
            return await connection.get_machine_id()

    async def _on_any_instance(
        self,
        instances: list[ClusterInstance],
        description: str,
        action: Callable[[InstanceConnection], Awaitable[T]],
    ) -> T:
        # The first instance that answers wins.
        for instance in instances:
            try:
                async with self._connector.connect(instance) as connection:
                    return await action(connection)
            except QuarkError as e:
                self._logger.warning(f"Cannot {description} on '{instance.name}': {e}")

        raise RemoteExecutionError(f'Cannot {description} on any instance')

    async def _check_os_version(self, instance: ClusterInstance, min_version: str) -> None:
        async with self._connector.connect(instance) as connection:
            release = await connection.get_os_release()

        if not min_version or release.id not in VERSIONED_OS_IDS:
            return

        if os_version_key(release.version) < os_version_key(min_version):
            self._logger.exception(
                f'OS on {instance.name} is {release.id} {release.version}, older than {min_version}', exc_info=False
            )
            raise ValidationError(
                f'Instance {instance.name} runs {release.id} {release.version}, need at least {min_version}'
            )

        self._logger.info(f'OS on {instance.name} is up to date')

    async def _create_instance(self, options: CreateInstanceOptions) -> ClusterInstance:
        instance = await self._provider_call(
            f'Creating instance {options.instance_name}', self._provider.create_instance(options)
        )

        self._logger.info(f'Waiting for {instance.name} to accept remote commands')
        await self._wait_until_reachable(instance)

        await self._check_os_version(instance, options.instance_config.min_os_version)

        await self._provider_call(
            f'Registering DNS records of {instance.name}', register_instance(self._dns_provider, options, instance)
        )

        self._logger.info(f'Instance {instance.name} ready')

        return instance

    async def _delete_instance(self, info: ClusterInfo, instance: ClusterInstance) -> None:
        await self._provider_call(
            f'Removing DNS records of {instance.name}', unregister_instance(self._dns_provider, instance, info.domain)
        )

        instance_info = ClusterInstanceInfo(domain=info.domain, name=info.name, id=info.id, prefix=instance.prefix)

        await self._provider_call(f'Deleting instance {instance.name}', self._provider.delete_instance(instance_info))

        self._logger.info(f'Deleted instance {instance.name}')

    async def _synchronize(
        self, instances: ClusterInstanceList, is_etcd_proxy: EtcdProxyPredicate | None = None
    ) -> ClusterMemberList:
        members = await self.membership.sync(instances, is_etcd_proxy)

        if instances and all(x.vpn_address for x in instances):
            await self.mesh.configure(instances)
        else:
            self._logger.warning('Not every instance has a VPN address, skipping mesh configuration')

        return members

    async def get_instances(self, info: ClusterInfo) -> ClusterInstanceList:
        return await self._provider_call(f'Listing instances of {info}', self._provider.get_instances(info))

    def prepare_cluster_options(self, options: CreateClusterOptions) -> CreateClusterOptions:
        options = self._provider.apply_cluster_defaults(options)
        options.validate()

        return options

    async def create_cluster(self, options: CreateClusterOptions) -> ClusterInstanceList:
        options = self.prepare_cluster_options(options)

        info = options.cluster_info

        existing = await self.get_instances(info)

        if existing:
            raise ValidationError(f'Cluster {info} already exists ({len(existing)} instances)')

        if not info.id:
            options.cluster_info = info = replace(info, id=generate_token(CLUSTER_ID_LENGTH))

        self._logger.info(f'Will create cluster {info} with {options.instance_count} instance(s)')

        discovery_url = await self._provider_call(
            'Creating etcd discovery URL', new_discovery_url(options.instance_count)
        )

        instance_options = []

        for index in range(1, options.instance_count + 1):
            instance_option = options.new_instance_options(is_core=True, is_lb=True, index=index)
            instance_option.discovery_url = discovery_url

            instance_options.append(self._provider.apply_instance_defaults(instance_option))

        outcome = await fan_out(instance_options, self._create_instance, label=lambda x: x.instance_name)

        if not outcome.ok:
            self._logger.exception(
                f'Failed to create {len(outcome.failures)} of {len(instance_options)} instance(s) of {info}',
                exc_info=False,
            )
            outcome.raise_first()

        instances = ClusterInstanceList(outcome.values())

        await self._synchronize(instances)

        self._logger.info(f'Cluster {info} created')

        return instances

    async def update_cluster(self, info: ClusterInfo) -> ClusterMemberList:
        instances = await self.get_instances(info)

        if not instances:
            raise NotFoundError(f'Cluster {info} has no instances')

        self._logger.info(f'Updating cluster {info} ({len(instances)} instances)')

        return await self._synchronize(instances)

    async def delete_cluster(self, info: ClusterInfo) -> None:
        """Delete every instance of the cluster; continues past failures and raises the first one at the end."""
        instances = await self.get_instances(info)

        self._logger.info(f'Deleting cluster {info} ({len(instances)} instances)')

        errors: list[QuarkError] = []

        for instance in instances:
            try:
                await self._delete_instance(info, instance)
            except QuarkError as e:
                self._logger.exception(f'Failed to delete instance {instance.name}: {e}', exc_info=False)
                errors.append(e)

        if errors:
            raise errors[0]

    async def add_instance(self, options: CreateInstanceOptions) -> ClusterInstance:
        options = self._provider.apply_instance_defaults(options)

        info = options.cluster_info

        if not options.instance_name:
            options.setup_names('', info.name, info.domain)

        instances = await self.get_instances(info)

        if not instances:
            raise NotFoundError(f'Cluster {info} does not exist')

        cluster_id, vault_address, discovery_url = await asyncio.gather(
            self._on_any_instance(instances, 'get cluster-id', lambda x: x.get_cluster_id()),
            self._on_any_instance(instances, 'get vault-addr', lambda x: x.get_vault_addr()),
            self._on_any_instance(instances, 'get etcd discovery URL', lambda x: x.get_discovery_url()),
        )

        options.cluster_info = info = replace(info, id=cluster_id)
        options.vault_address = vault_address or options.vault_address
        options.discovery_url = discovery_url

        if options.instance_index == 0:
            options.instance_index = len(instances) + 1

        if options.vpn_address:
            if not instances.is_free_vpn_address(options.vpn_address):
                raise ValidationError(f'Duplicate VPN address: {options.vpn_address}')
        elif options.vpn_cidr:
            candidate = ''

            if options.instance_index < 255:
                candidate = vpn_address(options.vpn_cidr, options.instance_index)

            if not candidate or not instances.is_free_vpn_address(candidate):
                candidate = instances.next_free_vpn_address(options.vpn_cidr)

            options.vpn_address = candidate

        options.validate()

        self._logger.info(f'Creating new instance {options.instance_name} on {info}')

        instance = await self._create_instance(options)

        if not options.etcd_proxy:
            async with self._connector.connect(instance) as connection:
                machine_id = await connection.get_machine_id()

            await self._on_any_instance(
                instances,
                f'add {machine_id} to etcd',
                lambda x: x.add_etcd_member(machine_id, instance.cluster_ip),
            )

        instances.append(instance)

        await self._synchronize(instances, is_etcd_proxy=lambda x: options.etcd_proxy and x.equals(instance))

        return instance

    async def remove_instance(self, info: ClusterInstanceInfo, remove_from_etcd: bool = False) -> None:
        """
        Delete one instance and resync the remaining ones.

        The etcd member of the instance is only removed when ``remove_from_etcd`` is set; draining
        the member beforehand is left to the operator.
        """
        instances = await self.get_instances(info)
        instance = instances.find_by_name(str(info))
        remaining = instances.without(instance)

        if remove_from_etcd and remaining:
            await self._on_any_instance(
                remaining,
                f'remove {instance.name} from etcd',
                lambda x: x.remove_etcd_member(instance.name, instance.cluster_ip),
            )

        await self._delete_instance(info, instance)

        if remaining:
            await self._synchronize(remaining)
