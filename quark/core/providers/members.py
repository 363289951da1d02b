from dataclasses import dataclass

from quark.core.exceptions import NotFoundError, ValidationError
from quark.core.providers.models import ClusterInstance


@dataclass(frozen=True)
class ClusterMember:
    machine_id: str
    cluster_ip: str
    private_host_ip: str = ''
    is_etcd_proxy: bool = False

    def render(self) -> str:
        line = f'{self.machine_id}={self.cluster_ip}'

        if self.is_etcd_proxy:
            line += ' etcd-proxy'

        if self.private_host_ip and self.private_host_ip != self.cluster_ip:
            line += f' private-host-ip={self.private_host_ip}'

        return line


class ClusterMemberList(list[ClusterMember]):
    """Peer ledger, rendered in iteration order; one member per machine id."""

    def append(self, member: ClusterMember) -> None:
        if any(x.machine_id == member.machine_id for x in self):
            raise ValidationError(f"Duplicate machine id '{member.machine_id}' in member list")

        super().append(member)

    def render(self) -> str:
        return ''.join(f'{x.render()}\n' for x in self)

    def find(self, instance: ClusterInstance) -> ClusterMember:
        for member in self:
            if member.cluster_ip == instance.cluster_ip:
                return member

        raise NotFoundError(f'No cluster member found for instance {instance.name}')
