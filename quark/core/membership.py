from collections.abc import Callable, Iterable

from quark.core.fanout import fan_out
from quark.core.providers.connection import QUARK_CONFIG_DIR, HostConnector
from quark.core.providers.members import ClusterMember, ClusterMemberList
from quark.core.providers.models import ClusterInstance
from quark.core.utils import setup_logger

CLUSTER_MEMBERS_PATH = f'{QUARK_CONFIG_DIR}/cluster-members'

EtcdProxyPredicate = Callable[[ClusterInstance], bool]


class MembershipSynchronizer:
    """
    Keeps ``/etc/quark/cluster-members`` identical on every live instance.

    The list is rebuilt from the hosts on every run and the file is always overwritten as a
    whole, so a failed run is repaired by running it again.
    """

    def __init__(self, connector: HostConnector, service: str = 'gluon.service') -> None:
        self._logger = setup_logger('MembershipSynchronizer')

        self._connector = connector
        self._service = service

    async def _read_member(self, instance: ClusterInstance, is_etcd_proxy: EtcdProxyPredicate | None) -> ClusterMember:
        async with self._connector.connect(instance) as connection:
            machine_id = await connection.get_machine_id()
            etcd_proxy = await connection.is_etcd_proxy()

        if is_etcd_proxy is not None:
            etcd_proxy = etcd_proxy or is_etcd_proxy(instance)

        return ClusterMember(
            machine_id=machine_id,
            cluster_ip=instance.cluster_ip,
            private_host_ip=instance.private_ip,
            is_etcd_proxy=etcd_proxy,
        )

    async def collect_members(
        self, instances: Iterable[ClusterInstance], is_etcd_proxy: EtcdProxyPredicate | None = None
    ) -> ClusterMemberList:
        outcome = await fan_out(instances, lambda x: self._read_member(x, is_etcd_proxy), label=lambda x: x.name)

        if not outcome.ok:
            self._logger.exception(
                f'Failed to read member info from {len(outcome.failures)} instance(s): {outcome.first_error}',
                exc_info=False,
            )
            outcome.raise_first()

        members = ClusterMemberList()

        for member in outcome.values():
            members.append(member)

        return members

    async def _push(self, instance: ClusterInstance, content: str) -> None:
        async with self._connector.connect(instance) as connection:
            await connection.write_file(CLUSTER_MEMBERS_PATH, content)
            await connection.systemctl('restart', self._service)

        self._logger.info(f'Updated cluster members on {instance.name}')

    async def push_members(self, instances: Iterable[ClusterInstance], members: ClusterMemberList) -> None:
        content = members.render()

        outcome = await fan_out(instances, lambda x: self._push(x, content), label=lambda x: x.name)

        if not outcome.ok:
            self._logger.exception(
                f'Failed to update cluster members on {len(outcome.failures)} instance(s): {outcome.first_error}',
                exc_info=False,
            )
            outcome.raise_first()

    async def sync(
        self, instances: list[ClusterInstance], is_etcd_proxy: EtcdProxyPredicate | None = None
    ) -> ClusterMemberList:
        self._logger.info(f'Synchronizing cluster members on {len(instances)} instance(s)')

        members = await self.collect_members(instances, is_etcd_proxy)

        await self.push_members(instances, members)

        return members
