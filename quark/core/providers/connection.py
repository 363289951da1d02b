from __future__ import annotations

import posixpath
import shlex
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import asyncssh

from quark.core.exceptions import DeadlineExceededError, NotFoundError, RemoteExecutionError
from quark.core.providers.models import ClusterInstance
from quark.core.utils import setup_logger

QUARK_CONFIG_DIR = '/etc/quark'
CLUSTER_ID_PATH = f'{QUARK_CONFIG_DIR}/cluster-id'
DISCOVERY_URL_PATH = f'{QUARK_CONFIG_DIR}/etcd-discovery'
VAULT_ADDR_PATH = f'{QUARK_CONFIG_DIR}/vault-addr'
MACHINE_ID_PATH = '/etc/machine-id'
OS_RELEASE_PATH = '/etc/os-release'

ETCD_SERVICE = 'etcd2.service'


@dataclass(frozen=True)
class OSRelease:
    id: str
    version: str


class CommandRunner(ABC):
    """An open, authenticated command channel to one host."""

    host: str

    @abstractmethod
    async def run(self, command: str, stdin: str | None = None, timeout: float | None = None) -> str:
        """Run ``command`` and return its stdout without the trailing newline."""

    @abstractmethod
    async def close(self) -> None:
        pass


class HostConnector(ABC):
    @abstractmethod
    async def open(self, instance: ClusterInstance) -> CommandRunner:
        pass

    @asynccontextmanager
    async def connect(self, instance: ClusterInstance) -> AsyncIterator[InstanceConnection]:
        runner = await self.open(instance)

        try:
            yield InstanceConnection(instance, runner)
        finally:
            await runner.close()


class InstanceConnection:
    def __init__(self, instance: ClusterInstance, runner: CommandRunner) -> None:
        self._logger = setup_logger('InstanceConnection')

        self.instance = instance
        self._runner = runner

    async def run(self, command: str, stdin: str | None = None, timeout: float | None = None) -> str:
        self._logger.debug(f'Running "{command}" on {self.instance.name}')

        return await self._runner.run(command, stdin=stdin, timeout=timeout)

    async def read_file(self, path: str) -> str:
        return await self.run(f'sudo cat {shlex.quote(path)}')

    async def file_exists(self, path: str) -> bool:
        check = f'test -f {shlex.quote(path)} && echo yes || true'

        return await self.run(f'sudo sh -c {shlex.quote(check)}') == 'yes'

    async def write_file(self, path: str, content: str, mode: str | None = None) -> None:
        directory = posixpath.dirname(path)

        await self.run(f'sudo mkdir -p {shlex.quote(directory)}')
        await self.run(f'sudo tee {shlex.quote(path)}', stdin=content)

        if mode is not None:
            await self.run(f'sudo chmod {mode} {shlex.quote(path)}')

    async def systemctl(self, action: str, unit: str = '') -> None:
        command = f'sudo systemctl {action}'

        if unit:
            command = f'{command} {shlex.quote(unit)}'

        await self.run(command)

    async def get_machine_id(self) -> str:
        return await self.run(f'cat {MACHINE_ID_PATH}')

    async def get_cluster_id(self) -> str:
        return await self.read_file(CLUSTER_ID_PATH)

    async def get_vault_addr(self) -> str:
        return await self.read_file(VAULT_ADDR_PATH)

    async def get_discovery_url(self) -> str:
        return await self.read_file(DISCOVERY_URL_PATH)

    async def get_os_release(self) -> OSRelease:
        content = await self.run(f'cat {OS_RELEASE_PATH}')

        fields = {}

        for line in content.splitlines():
            key, sep, value = line.strip().partition('=')
            if sep:
                fields[key] = value.strip().strip('"')

        if 'VERSION_ID' not in fields:
            raise NotFoundError(f'VERSION_ID not found in {OS_RELEASE_PATH} on {self.instance.name}')

        return OSRelease(id=fields.get('ID', ''), version=fields['VERSION_ID'])

    async def is_etcd_proxy(self) -> bool:
        unit = await self.run(f'systemctl cat {ETCD_SERVICE}')

        return 'ETCD_PROXY' in unit

    async def add_etcd_member(self, name: str, cluster_ip: str) -> None:
        self._logger.info(f'Adding {name}({cluster_ip}) to etcd on {self.instance.name}')

        await self.run(f'etcdctl member add {shlex.quote(name)} http://{cluster_ip}:2380')

    async def remove_etcd_member(self, name: str, cluster_ip: str) -> None:
        self._logger.info(f'Removing {name}({cluster_ip}) from etcd on {self.instance.name}')

        member_id = await self.run(f"sh -c 'etcdctl member list | grep {cluster_ip} | cut -d: -f1 | cut -d[ -f1'")

        if not member_id:
            raise NotFoundError(f'No etcd member with address {cluster_ip} on {self.instance.name}')

        await self.run(f'etcdctl member remove {member_id}')


class SSHCommandRunner(CommandRunner):
    def __init__(self, connection: asyncssh.SSHClientConnection, host: str, command_timeout: float | None) -> None:
        self._connection = connection
        self._command_timeout = command_timeout
        self.host = host

    async def run(self, command: str, stdin: str | None = None, timeout: float | None = None) -> str:
        timeout = timeout or self._command_timeout

        try:
            result = await self._connection.run(command, input=stdin, check=True, timeout=timeout)
        except asyncssh.TimeoutError as e:
            raise DeadlineExceededError(f'Command "{command}" on {self.host} did not finish within {timeout}s') from e
        except asyncssh.ProcessError as e:
            raise RemoteExecutionError(
                f'Command "{command}" failed on {self.host} with exit status {e.exit_status}',
                host=self.host,
                command=command,
                stderr=str(e.stderr or ''),
            ) from e
        except (OSError, asyncssh.Error) as e:
            raise RemoteExecutionError(
                f'Command "{command}" could not be run on {self.host}', host=self.host, command=command
            ) from e

        return str(result.stdout or '').removesuffix('\n')

    async def close(self) -> None:
        self._connection.close()
        await self._connection.wait_closed()


class SSHHostConnector(HostConnector):
    def __init__(
        self,
        private_key_path: str | None = None,
        connect_timeout: float | None = None,
        command_timeout: float | None = None,
    ) -> None:
        self._logger = setup_logger('SSHHostConnector')

        # Without a key file asyncssh falls back to the SSH agent and the default keys.
        self._client_keys = [Path(private_key_path).expanduser()] if private_key_path else ()
        self._connect_timeout = connect_timeout
        self._command_timeout = command_timeout

    async def open(self, instance: ClusterInstance) -> CommandRunner:
        address = instance.address

        if not address:
            raise RemoteExecutionError(f"Don't have any address to communicate with instance {instance.name}")

        self._logger.debug(f'Connecting to {instance.user_name}@{address}')

        try:
            connection = await asyncssh.connect(
                address,
                username=instance.user_name,
                client_keys=self._client_keys,
                known_hosts=None,
                connect_timeout=self._connect_timeout,
            )
        except TimeoutError as e:
            raise DeadlineExceededError(f'Connecting to {instance.name} ({address}) timed out') from e
        except (OSError, asyncssh.Error) as e:
            raise RemoteExecutionError(f'Failed to connect to {instance.name} ({address})', host=address) from e

        return SSHCommandRunner(connection, address, self._command_timeout)
