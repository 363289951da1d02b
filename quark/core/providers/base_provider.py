from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from quark.core.providers.models import ClusterInfo, ClusterInstance, ClusterInstanceInfo, ClusterInstanceList
from quark.core.providers.options import CreateClusterOptions, CreateInstanceOptions
from quark.core.utils import setup_logger


class CloudProvider(ABC):
    name: str

    def __init__(self) -> None:
        self._logger = setup_logger(self.name.capitalize())

    @abstractmethod
    def apply_cluster_defaults(self, options: CreateClusterOptions) -> CreateClusterOptions:
        pass

    @abstractmethod
    def apply_instance_defaults(self, options: CreateInstanceOptions) -> CreateInstanceOptions:
        pass

    @abstractmethod
    async def create_instance(self, options: CreateInstanceOptions) -> ClusterInstance:
        """Create one instance and return once the provider reports it as running."""

    @abstractmethod
    async def get_instances(self, info: ClusterInfo) -> ClusterInstanceList:
        pass

    @abstractmethod
    async def delete_instance(self, info: ClusterInstanceInfo) -> None:
        pass

    @abstractmethod
    async def list_regions(self) -> list[str]:
        pass

    @abstractmethod
    async def list_images(self) -> list[str]:
        pass

    @abstractmethod
    async def list_keys(self) -> list[str]:
        pass

    @abstractmethod
    async def list_instance_types(self) -> list[str]:
        pass


@dataclass(frozen=True)
class DnsRecord:
    type: str
    name: str
    data: str
    id: str = ''


class DnsProvider(ABC):
    name: str

    def __init__(self) -> None:
        self._logger = setup_logger(self.name.capitalize())

    @abstractmethod
    async def create_record(self, domain: str, record_type: str, name: str, data: str) -> None:
        pass

    @abstractmethod
    async def delete_records(self, domain: str, record_type: str, name: str, data: str = '') -> None:
        """Delete every record of ``record_type`` named ``name``; an empty ``data`` matches any value."""

    @abstractmethod
    async def list_records(self, domain: str) -> list[DnsRecord]:
        pass
