from quark.core.exceptions import ValidationError
from quark.core.fanout import fan_out
from quark.core.providers.connection import HostConnector
from quark.core.providers.models import ClusterInstance
from quark.core.template_loader import TemplateLoader, template_loader
from quark.core.utils import setup_logger

TINC_ROOT = '/etc/tinc'
TINC_SERVICE = 'tinc.service'
TINC_SERVICE_PATH = f'/etc/systemd/system/{TINC_SERVICE}'
SCRIPT_MODE = '755'
PRIVATE_KEY_FILE = 'rsa_key.priv'


def tinc_name(instance: ClusterInstance) -> str:
    return instance.name.replace('.', '_').replace('-', '_')


class MeshConfigurator:
    """
    Builds the full-mesh tinc network between all live instances.

    Phase 1 writes the local configuration on every host. Hosts without a private key get a fresh
    descriptor and let tincd generate the key into it; hosts that already have one keep their key
    and descriptor. Phase 2 copies every descriptor to all other hosts. Each phase is a barrier for
    the next one.
    """

    def __init__(self, connector: HostConnector, network: str = 'quark', templates: TemplateLoader | None = None) -> None:
        self._logger = setup_logger('MeshConfigurator')

        self._connector = connector
        self._templates = templates or template_loader
        self.network = network

    @property
    def config_dir(self) -> str:
        return f'{TINC_ROOT}/{self.network}'

    @property
    def hosts_dir(self) -> str:
        return f'{self.config_dir}/hosts'

    @property
    def private_key_path(self) -> str:
        return f'{self.config_dir}/{PRIVATE_KEY_FILE}'

    def host_descriptor_path(self, instance: ClusterInstance) -> str:
        return f'{self.hosts_dir}/{tinc_name(instance)}'

    def render_tinc_conf(self, instance: ClusterInstance, instances: list[ClusterInstance]) -> str:
        peers = [x.private_ip for x in instances if x.name != instance.name]

        return self._templates.render_template(
            'tinc.conf', 'tinc', values={'name': tinc_name(instance), 'peers': peers}
        )

    def render_host_descriptor(self, instance: ClusterInstance) -> str:
        return self._templates.render_template(
            'host', 'tinc', values={'private_address': instance.private_ip, 'vpn_address': instance.vpn_address}
        )

    def render_up_script(self, instance: ClusterInstance) -> str:
        return self._templates.render_template('tinc-up', 'tinc', values={'vpn_address': instance.vpn_address})

    def render_down_script(self) -> str:
        return self._templates.render_template('tinc-down', 'tinc')

    def render_service(self) -> str:
        return self._templates.render_template('tinc.service', 'tinc', values={'network': self.network})

    async def _generate(self, instance: ClusterInstance, instances: list[ClusterInstance]) -> None:
        async with self._connector.connect(instance) as connection:
            has_key = await connection.file_exists(self.private_key_path)

            await connection.write_file(f'{self.config_dir}/tinc.conf', self.render_tinc_conf(instance, instances))

            if not has_key:
                await connection.write_file(self.host_descriptor_path(instance), self.render_host_descriptor(instance))

            await connection.write_file(f'{self.config_dir}/tinc-up', self.render_up_script(instance), mode=SCRIPT_MODE)
            await connection.write_file(f'{self.config_dir}/tinc-down', self.render_down_script(), mode=SCRIPT_MODE)

            await connection.write_file(TINC_SERVICE_PATH, self.render_service())
            await connection.systemctl('daemon-reload')
            await connection.systemctl('enable', TINC_SERVICE)

            if has_key:
                self._logger.info(f'Keeping existing tinc key on {instance.name}')
            else:
                # tincd appends the new public key to the host descriptor written above.
                await connection.run(f'sudo tincd -n {self.network} -K')

        self._logger.info(f'Generated tinc configuration on {instance.name}')

    async def _prune(self, instance: ClusterInstance) -> None:
        async with self._connector.connect(instance) as connection:
            await connection.run(f'sudo find {self.hosts_dir} -type f ! -name {tinc_name(instance)} -delete')

    async def _distribute(self, instance: ClusterInstance, instances: list[ClusterInstance]) -> None:
        async with self._connector.connect(instance) as connection:
            descriptor = await connection.read_file(self.host_descriptor_path(instance))

        for peer in instances:
            if peer.name == instance.name:
                continue

            async with self._connector.connect(peer) as connection:
                await connection.write_file(self.host_descriptor_path(instance), f'{descriptor}\n')

        self._logger.info(f'Distributed host descriptor of {instance.name}')

    async def _run_phase(self, name: str, instances: list[ClusterInstance], func) -> None:
        outcome = await fan_out(instances, func, label=lambda x: x.name)

        if not outcome.ok:
            self._logger.exception(
                f'Mesh {name} failed on {len(outcome.failures)} instance(s): {outcome.first_error}', exc_info=False
            )
            outcome.raise_first()

    async def configure(self, instances: list[ClusterInstance]) -> None:
        missing = [x.name for x in instances if not x.vpn_address]

        if missing:
            raise ValidationError(f'Instances without VPN address: {", ".join(missing)}')

        self._logger.info(f'Configuring tinc mesh "{self.network}" on {len(instances)} instance(s)')

        await self._run_phase('generate', instances, lambda x: self._generate(x, instances))
        await self._run_phase('cleanup', instances, self._prune)
        await self._run_phase('distribute', instances, lambda x: self._distribute(x, instances))

        for instance in instances:
            async with self._connector.connect(instance) as connection:
                self._logger.info(f'Starting tinc on {instance.name}')
                await connection.systemctl('restart', TINC_SERVICE)
