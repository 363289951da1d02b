import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from quark.core.config import DEFAULT_GLUON_IMAGE, DEFAULT_MIN_OS_VERSION, DEFAULT_REBOOT_STRATEGY
from quark.core.exceptions import ValidationError
from quark.core.providers.models import ClusterInfo, parse_vpn_network
from quark.core.utils import generate_prefixes, generate_token, setup_logger

logger = setup_logger('ClusterOptions')


def vpn_address(cidr: str, index: int) -> str:
    """Address of instance ``index`` (1..254) inside the /24 network ``cidr``."""
    network = parse_vpn_network(cidr)

    if index < 1 or index >= 255:
        raise ValidationError(f'Expected instance index in the range of 1..254, got {index}')

    return str(network.network_address + index)


def _to_str(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'

    return str(value)


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Expected an integer, got '{value}'") from e


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')

    return bool(value)


def _to_list(value: Any) -> list[str]:
    if isinstance(value, list | tuple):
        return [str(x) for x in value]

    return [x.strip() for x in str(value).split(',') if x.strip()]


# flag name -> (nested attribute or None, attribute, converter)
_SHARED_VALUE_FIELDS = {
    'domain': ('cluster_info', 'domain', _to_str),
    'name': ('cluster_info', 'name', _to_str),
    'image': ('instance_config', 'image', _to_str),
    'region': ('instance_config', 'region', _to_str),
    'type': ('instance_config', 'type', _to_str),
    'min-os-version': ('instance_config', 'min_os_version', _to_str),
    'gluon-image': (None, 'gluon_image', _to_str),
    'reboot-strategy': (None, 'reboot_strategy', _to_str),
    'private-registry-url': (None, 'private_registry_url', _to_str),
    'private-registry-username': (None, 'private_registry_username', _to_str),
    'private-registry-password': (None, 'private_registry_password', _to_str),
    'ssh-key': (None, 'ssh_key_names', _to_list),
    'ssh-key-github-account': (None, 'ssh_key_github_account', _to_str),
    'vault-addr': (None, 'vault_address', _to_str),
    'vault-cacert': (None, 'vault_cacert', _to_str),
    'tinc-cidr': (None, 'vpn_cidr', _to_str),
    'register-instance': (None, 'register_instance', _to_bool),
    'http-proxy': (None, 'http_proxy', _to_str),
}

_CLUSTER_VALUE_FIELDS = {
    **_SHARED_VALUE_FIELDS,
    'cluster-id': ('cluster_info', 'id', _to_str),
    'instance-count': (None, 'instance_count', _to_int),
}

_INSTANCE_VALUE_FIELDS = {
    **_SHARED_VALUE_FIELDS,
    'index': (None, 'instance_index', _to_int),
    'role-core': (None, 'role_core', _to_bool),
    'role-lb': (None, 'role_load_balancer', _to_bool),
    'role-vault': (None, 'role_vault', _to_bool),
    'role-worker': (None, 'role_worker', _to_bool),
    'etcd-proxy': (None, 'etcd_proxy', _to_bool),
    'tinc-ipv4': (None, 'vpn_address', _to_str),
}


def os_version_key(version: str) -> tuple[int, ...]:
    try:
        return tuple(int(x) for x in version.strip().split('.'))
    except ValueError as e:
        raise ValidationError(f"Invalid OS version '{version}'") from e


def _field_default(obj: Any, name: str) -> Any:
    for f in dataclasses.fields(obj):
        if f.name == name:
            if f.default is not dataclasses.MISSING:
                return f.default
            if f.default_factory is not dataclasses.MISSING:
                return f.default_factory()

    return None


def _is_unset(obj: Any, name: str) -> bool:
    value = getattr(obj, name)

    return value in (None, '', 0, False, []) or value == _field_default(obj, name)


def _apply_values(target: Any, values: dict[str, Any], value_fields: dict) -> None:
    for key, value in values.items():
        if key not in value_fields:
            logger.debug(f"Ignoring unknown option '{key}'")
            continue

        nested, attribute, convert = value_fields[key]

        owner = getattr(target, nested) if nested else target

        if not _is_unset(owner, attribute):
            continue

        converted = convert(value)

        if dataclasses.is_dataclass(owner) and owner.__dataclass_params__.frozen:
            setattr(target, nested, dataclasses.replace(owner, **{attribute: converted}))
        else:
            setattr(owner, attribute, converted)


@dataclass
class InstanceConfig:
    image: str = ''
    region: str = ''
    type: str = ''
    min_os_version: str = DEFAULT_MIN_OS_VERSION
    no_public_ipv4: bool = False

    def __str__(self) -> str:
        return f'type: {self.type}, image: {self.image}, region: {self.region}'

    def validate(self) -> None:
        if not self.image:
            raise ValidationError('Please specify an image')

        if not self.region:
            raise ValidationError('Please specify a region')

        if not self.type:
            raise ValidationError('Please specify a type')

        if self.min_os_version:
            os_version_key(self.min_os_version)


@dataclass
class CreateInstanceOptions:
    cluster_info: ClusterInfo
    instance_config: InstanceConfig = field(default_factory=InstanceConfig)
    cluster_name: str = ''
    instance_name: str = ''
    instance_index: int = 0
    register_instance: bool = False
    role_core: bool = False
    role_load_balancer: bool = False
    role_vault: bool = False
    role_worker: bool = False
    ssh_key_names: list[str] = field(default_factory=list)
    ssh_key_github_account: str = ''
    gluon_image: str = DEFAULT_GLUON_IMAGE
    reboot_strategy: str = DEFAULT_REBOOT_STRATEGY
    private_registry_url: str = ''
    private_registry_username: str = ''
    private_registry_password: str = ''
    etcd_proxy: bool = False
    vault_address: str = ''
    vault_cacert: str = ''
    vpn_cidr: str = ''
    vpn_address: str = ''
    http_proxy: str = ''
    discovery_url: str = ''

    @property
    def prefix(self) -> str:
        return self.instance_name.split('.', 1)[0]

    def setup_names(self, prefix: str, cluster_name: str, domain: str) -> None:
        if not prefix:
            prefix = generate_token(6)

        self.cluster_name = f'{cluster_name}.{domain}'
        self.instance_name = f'{prefix}.{cluster_name}.{domain}'

    def fleet_metadata(self) -> str:
        items = [f'region={self.instance_config.region}']

        items.append('even=true' if self.instance_index % 2 == 0 else 'odd=true')

        if self.role_core:
            items.append('core=true')
        if self.role_load_balancer:
            items.append('lb=true')
        if self.role_vault:
            items.append('vault=true')
        if self.role_worker:
            items.append('worker=true')

        return ','.join(items)

    def roles(self) -> str:
        flags = (
            (self.role_core, 'core'),
            (self.role_load_balancer, 'lb'),
            (self.role_vault, 'vault'),
            (self.role_worker, 'worker'),
        )

        return ','.join(name for enabled, name in flags if enabled)

    def vault_certificate(self) -> str:
        """Content of the vault CA certificate file, empty when none is configured."""
        if not self.vault_cacert:
            return ''

        try:
            return Path(self.vault_cacert).expanduser().read_text()
        except OSError as e:
            raise ValidationError(f"Cannot read vault-cacert '{self.vault_cacert}'") from e

    def apply_values(self, values: dict[str, Any]) -> None:
        _apply_values(self, values, _INSTANCE_VALUE_FIELDS)

    def validate(self) -> None:
        if not self.cluster_name:
            raise ValidationError('Please specify a cluster-name')

        if not self.instance_name:
            raise ValidationError('Please specify an instance-name')

        self.instance_config.validate()

        if not self.ssh_key_names:
            raise ValidationError('Please specify at least one SSH key')

        if not self.gluon_image:
            raise ValidationError('Please specify a gluon-image')

        if self.vpn_cidr and not self.vpn_address:
            raise ValidationError(f'Instance {self.instance_name} has no VPN address in {self.vpn_cidr}')

        self.vault_certificate()

    def cloud_config_values(self) -> dict[str, Any]:
        return {
            'instance_name': self.instance_name,
            'cluster_id': self.cluster_info.id,
            'discovery_url': self.discovery_url,
            'vault_address': self.vault_address,
            'vault_certificate': self.vault_certificate(),
            'roles': self.roles(),
            'fleet_metadata': self.fleet_metadata(),
            'gluon_image': self.gluon_image,
            'reboot_strategy': self.reboot_strategy,
            'etcd_proxy': self.etcd_proxy,
            'vpn_address': self.vpn_address,
            'http_proxy': self.http_proxy,
            'private_registry_url': self.private_registry_url,
            'private_registry_username': self.private_registry_username,
            'private_registry_password': self.private_registry_password,
        }


@dataclass
class CreateClusterOptions:
    cluster_info: ClusterInfo
    instance_config: InstanceConfig = field(default_factory=InstanceConfig)
    instance_count: int = 0
    ssh_key_names: list[str] = field(default_factory=list)
    ssh_key_github_account: str = ''
    register_instance: bool = False
    gluon_image: str = DEFAULT_GLUON_IMAGE
    reboot_strategy: str = DEFAULT_REBOOT_STRATEGY
    private_registry_url: str = ''
    private_registry_username: str = ''
    private_registry_password: str = ''
    vault_address: str = ''
    vault_cacert: str = ''
    vpn_cidr: str = ''
    http_proxy: str = ''

    _prefixes: list[str] = field(default_factory=list, init=False, repr=False, compare=False)

    @property
    def prefixes(self) -> list[str]:
        # Drawn once, then reused so that index -> prefix stays stable for the lifetime of these options.
        if not self._prefixes:
            self._prefixes = generate_prefixes(self.instance_count)

        return self._prefixes

    def new_instance_options(self, is_core: bool, is_lb: bool, index: int) -> CreateInstanceOptions:
        if index < 1 or index > self.instance_count:
            raise ValidationError(f'Expected instance index in the range of 1..{self.instance_count}, got {index}')

        address = vpn_address(self.vpn_cidr, index) if self.vpn_cidr else ''

        options = CreateInstanceOptions(
            cluster_info=self.cluster_info,
            instance_config=dataclasses.replace(self.instance_config),
            instance_index=index,
            register_instance=self.register_instance,
            role_core=is_core,
            role_load_balancer=is_lb,
            ssh_key_names=list(self.ssh_key_names),
            ssh_key_github_account=self.ssh_key_github_account,
            gluon_image=self.gluon_image,
            reboot_strategy=self.reboot_strategy,
            private_registry_url=self.private_registry_url,
            private_registry_username=self.private_registry_username,
            private_registry_password=self.private_registry_password,
            vault_address=self.vault_address,
            vault_cacert=self.vault_cacert,
            vpn_cidr=self.vpn_cidr,
            vpn_address=address,
            http_proxy=self.http_proxy,
        )
        options.setup_names(self.prefixes[index - 1], self.cluster_info.name, self.cluster_info.domain)

        return options

    def apply_values(self, values: dict[str, Any]) -> None:
        _apply_values(self, values, _CLUSTER_VALUE_FIELDS)

    def validate(self) -> None:
        if not self.cluster_info.domain:
            raise ValidationError('Please specify a domain')

        if not self.cluster_info.name:
            raise ValidationError('Please specify a name')

        if '.' in self.cluster_info.name:
            raise ValidationError('Invalid characters in name')

        self.instance_config.validate()

        if not self.ssh_key_names:
            raise ValidationError('Please specify at least one SSH key')

        if self.instance_count < 1:
            raise ValidationError('Please specify a valid instance count')

        if not self.gluon_image:
            raise ValidationError('Please specify a gluon-image')

        if self.vpn_cidr:
            parse_vpn_network(self.vpn_cidr)

        if self.vault_cacert and not Path(self.vault_cacert).expanduser().is_file():
            raise ValidationError(f"Cannot read vault-cacert '{self.vault_cacert}'")
