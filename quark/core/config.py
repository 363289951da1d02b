import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).absolute().parent.parent.parent

load_dotenv(Path(PROJECT_ROOT, '.env'))

DEFAULT_INSTANCE_COUNT = 3
DEFAULT_GLUON_IMAGE = 'pulcy/gluon:0.16.8'
DEFAULT_REBOOT_STRATEGY = 'etcd-lock'
DEFAULT_MIN_OS_VERSION = '835.13.0'

PATH_TO_CLUSTER_BLUEPRINTS = Path(PROJECT_ROOT, 'config', 'clusters')


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)

    if value is None or value == '':
        return default

    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)

    return float(value) if value else default


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, '')

    return [x.strip() for x in value.split(',') if x.strip()]


@dataclass(frozen=True)
class QuarkSettings:
    """Configuration threaded explicitly into the orchestrator and the backends."""

    provider: str = 'hetzner'
    provider_token: str = ''
    dns_provider: str = 'cloudflare'
    dns_token: str = ''

    ssh_private_key_path: str | None = None

    domain: str = ''
    image: str = ''
    region: str = ''
    instance_type: str = ''
    ssh_key_names: list[str] = field(default_factory=list)
    ssh_key_github_account: str = ''
    gluon_image: str = DEFAULT_GLUON_IMAGE
    reboot_strategy: str = DEFAULT_REBOOT_STRATEGY
    private_registry_url: str = ''
    private_registry_username: str = ''
    private_registry_password: str = ''
    vault_address: str = ''
    vault_cacert: str = ''
    register_instances: bool = False

    clusters_dir: Path = PATH_TO_CLUSTER_BLUEPRINTS
    members_service: str = 'gluon.service'
    vpn_name: str = 'quark'

    # seconds
    command_timeout: float = 300.0
    connect_timeout: float = 30.0
    provider_timeout: float = 900.0

    @classmethod
    def from_env(cls) -> 'QuarkSettings':
        return cls(
            provider=os.getenv('QUARK_PROVIDER', 'hetzner'),
            provider_token=os.getenv('HCLOUD_TOKEN', ''),
            dns_provider=os.getenv('QUARK_DNS_PROVIDER', 'cloudflare'),
            dns_token=os.getenv('CLOUDFLARE_API_TOKEN', ''),
            ssh_private_key_path=os.getenv('QUARK_SSH_PRIVATE_KEY_PATH'),
            domain=os.getenv('QUARK_DOMAIN', ''),
            image=os.getenv('QUARK_IMAGE', ''),
            region=os.getenv('QUARK_REGION', ''),
            instance_type=os.getenv('QUARK_TYPE', ''),
            ssh_key_names=_env_list('QUARK_SSH_KEY'),
            ssh_key_github_account=os.getenv('QUARK_SSH_KEY_GITHUB_ACCOUNT', ''),
            gluon_image=os.getenv('QUARK_GLUON_IMAGE', DEFAULT_GLUON_IMAGE),
            reboot_strategy=os.getenv('QUARK_REBOOT_STRATEGY', DEFAULT_REBOOT_STRATEGY),
            private_registry_url=os.getenv('QUARK_REGISTRY_URL', ''),
            private_registry_username=os.getenv('QUARK_REGISTRY_USERNAME', ''),
            private_registry_password=os.getenv('QUARK_REGISTRY_PASSWORD', ''),
            vault_address=os.getenv('VAULT_ADDR', ''),
            vault_cacert=os.getenv('VAULT_CACERT', ''),
            register_instances=_env_bool('QUARK_REGISTER_INSTANCES'),
            clusters_dir=Path(os.getenv('PULCY_CLUSTERS') or PATH_TO_CLUSTER_BLUEPRINTS),
            members_service=os.getenv('QUARK_MEMBERS_SERVICE', 'gluon.service'),
            vpn_name=os.getenv('QUARK_VPN_NAME', 'quark'),
            command_timeout=_env_float('QUARK_COMMAND_TIMEOUT', 300.0),
            connect_timeout=_env_float('QUARK_CONNECT_TIMEOUT', 30.0),
            provider_timeout=_env_float('QUARK_PROVIDER_TIMEOUT', 900.0),
        )
