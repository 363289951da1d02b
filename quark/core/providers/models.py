import ipaddress
from dataclasses import dataclass

from quark.core.exceptions import NotFoundError, ValidationError

DEFAULT_USER_NAME = 'core'


@dataclass(frozen=True)
class ClusterInfo:
    domain: str
    name: str
    id: str = ''

    def __str__(self) -> str:
        return f'{self.name}.{self.domain}'

    @property
    def suffix(self) -> str:
        return f'.{self.name}.{self.domain}'


@dataclass(frozen=True)
class ClusterInstanceInfo(ClusterInfo):
    prefix: str = ''

    def __str__(self) -> str:
        return f'{self.prefix}.{self.name}.{self.domain}'


@dataclass(frozen=True)
class ClusterInstance:
    """A provisioned host as reported by a cloud provider."""

    id: str
    name: str
    private_ip: str = ''
    public_ipv4: str = ''
    public_ipv6: str = ''
    vpn_address: str = ''
    user_name: str = DEFAULT_USER_NAME

    def __str__(self) -> str:
        return self.public_ipv4 or self.public_ipv6 or self.name

    @property
    def cluster_ip(self) -> str:
        # Address used for all private communication inside the cluster.
        return self.vpn_address or self.private_ip

    @property
    def address(self) -> str:
        return self.public_ipv4 or self.public_ipv6 or self.private_ip

    @property
    def prefix(self) -> str:
        return self.name.split('.', 1)[0]

    def equals(self, other: 'ClusterInstance') -> bool:
        return self.id == other.id and self.cluster_ip == other.cluster_ip


def parse_vpn_network(cidr: str) -> ipaddress.IPv4Network:
    try:
        interface = ipaddress.ip_interface(cidr.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid VPN CIDR '{cidr}'") from e

    if interface.version != 4:
        raise ValidationError(f"Expected VPN CIDR to be an IPv4 CIDR, got '{cidr}'")

    if interface.network.prefixlen != 24:
        raise ValidationError(f"Expected VPN CIDR to contain a /24 network, got '{cidr}'")

    return interface.network


class ClusterInstanceList(list[ClusterInstance]):
    def contains(self, instance: ClusterInstance) -> bool:
        return any(x.equals(instance) for x in self)

    def find_by_name(self, name: str) -> ClusterInstance:
        for instance in self:
            if instance.name == name:
                return instance

        raise NotFoundError(f"Instance '{name}' not found")

    def find_by_prefix(self, prefix: str) -> ClusterInstance:
        for instance in self:
            if instance.prefix == prefix:
                return instance

        raise NotFoundError(f"Instance with prefix '{prefix}' not found")

    def without(self, instance: ClusterInstance) -> 'ClusterInstanceList':
        return ClusterInstanceList(x for x in self if not x.equals(instance))

    def is_free_vpn_address(self, address: str) -> bool:
        return all(x.vpn_address != address for x in self)

    def next_free_vpn_address(self, cidr: str) -> str:
        """
        Pick an unused address in the /24 given by ``cidr``.

        Prefers the lowest free address directly above the highest one in use, then falls back
        to the first free address of the network.
        """
        network = parse_vpn_network(cidr)
        base = network.network_address

        last_free_index = -1

        for index in range(254, 0, -1):
            if self.is_free_vpn_address(str(base + index)):
                last_free_index = index
            elif last_free_index > 0:
                return str(base + last_free_index)

        for index in range(1, 255):
            if self.is_free_vpn_address(str(base + index)):
                return str(base + index)

        raise ValidationError(f"No free VPN address left in '{cidr}'")
