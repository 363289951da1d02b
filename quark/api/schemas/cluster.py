from typing import Any

from pydantic import BaseModel, Field

from quark.core.config import DEFAULT_INSTANCE_COUNT


class ClusterCreateSchema(BaseModel):
    domain: str = ''
    name: str = ''
    cluster: str | None = Field(default=None, description='Blueprint reference, e.g. "worker@alpha"')
    instance_count: int = Field(default=DEFAULT_INSTANCE_COUNT, description='Used when the blueprint does not set one')
    image: str = ''
    region: str = ''
    type: str = ''
    ssh_key_names: list[str] = Field(default=[])
    ssh_key_github_account: str = ''
    register_instance: bool | None = None
    gluon_image: str = ''
    reboot_strategy: str = ''
    private_registry_url: str = ''
    private_registry_username: str = ''
    private_registry_password: str = ''
    vault_address: str = ''
    vault_cacert: str = ''
    vpn_cidr: str = ''
    http_proxy: str = ''


class ClusterCreateResponseSchema(BaseModel):
    name: str
    status: str


class InstanceCreateSchema(BaseModel):
    cluster: str | None = Field(default=None, description='Blueprint reference, e.g. "worker@alpha"')
    prefix: str = ''
    index: int = 0
    image: str = ''
    region: str = ''
    type: str = ''
    ssh_key_names: list[str] = Field(default=[])
    register_instance: bool | None = None
    role_core: bool = False
    role_load_balancer: bool = False
    role_vault: bool = False
    role_worker: bool = False
    etcd_proxy: bool = False
    vpn_cidr: str = ''
    vpn_address: str = ''
    http_proxy: str = ''


class InstanceSchema(BaseModel):
    id: str
    name: str
    private_ip: str
    public_ipv4: str
    public_ipv6: str
    vpn_address: str

    class Config:
        from_attributes = True


class BlueprintResolveSchema(BaseModel):
    content: str
    format: str = 'hcl'
    profile: str = ''


class BlueprintSchema(BaseModel):
    stack: str
    domain: str
    tunnel: str
    instance_count: int
    network: str
    values: dict[str, Any]
