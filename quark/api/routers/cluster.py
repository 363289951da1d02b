from collections.abc import Awaitable, Callable
from functools import lru_cache

from fastapi import APIRouter, Depends, status
from fastapi.background import BackgroundTasks

from quark.api.schemas.cluster import (
    BlueprintResolveSchema,
    BlueprintSchema,
    ClusterCreateResponseSchema,
    ClusterCreateSchema,
    InstanceCreateSchema,
    InstanceSchema,
)
from quark.core.cluster import load_cluster_reference, parse_cluster
from quark.core.cluster_manager import ClusterManager
from quark.core.config import QuarkSettings
from quark.core.exceptions import QuarkError
from quark.core.operation_status import OperationStatus
from quark.core.providers.models import ClusterInfo, ClusterInstanceInfo
from quark.core.providers.options import CreateClusterOptions, CreateInstanceOptions, InstanceConfig
from quark.core.utils import setup_logger

logger = setup_logger('APIClusterRouter')

router = APIRouter()


@lru_cache
def get_settings() -> QuarkSettings:
    return QuarkSettings.from_env()


def get_cluster_manager(settings: QuarkSettings = Depends(get_settings)) -> ClusterManager:
    return ClusterManager.from_settings(settings)


async def _run_logged(description: str, operation: Callable[[], Awaitable[object]]) -> None:
    # Background tasks have no caller left to report to.
    try:
        await operation()
    except QuarkError as e:
        logger.exception(f'{description} failed: {e}', exc_info=False)
        return

    logger.info(f'{description} finished')


def _cluster_options(cluster: ClusterCreateSchema, settings: QuarkSettings) -> CreateClusterOptions:
    options = CreateClusterOptions(
        cluster_info=ClusterInfo(domain=cluster.domain, name=cluster.name),
        instance_config=InstanceConfig(image=cluster.image, region=cluster.region, type=cluster.type),
        instance_count=cluster.instance_count if 'instance_count' in cluster.model_fields_set else 0,
        ssh_key_names=cluster.ssh_key_names,
        ssh_key_github_account=cluster.ssh_key_github_account,
        register_instance=bool(cluster.register_instance),
        private_registry_url=cluster.private_registry_url,
        private_registry_username=cluster.private_registry_username,
        private_registry_password=cluster.private_registry_password,
        vault_address=cluster.vault_address,
        vault_cacert=cluster.vault_cacert,
        vpn_cidr=cluster.vpn_cidr,
        http_proxy=cluster.http_proxy,
    )

    if cluster.gluon_image:
        options.gluon_image = cluster.gluon_image
    if cluster.reboot_strategy:
        options.reboot_strategy = cluster.reboot_strategy

    if cluster.cluster:
        _, values = load_cluster_reference(cluster.cluster, settings.clusters_dir)
        options.apply_values(values)

    options.apply_values(_settings_values(settings, cluster.register_instance))

    if not options.instance_count:
        options.instance_count = cluster.instance_count

    return options


def _instance_options(
    domain: str, name: str, instance: InstanceCreateSchema, settings: QuarkSettings
) -> CreateInstanceOptions:
    options = CreateInstanceOptions(
        cluster_info=ClusterInfo(domain=domain, name=name),
        instance_config=InstanceConfig(image=instance.image, region=instance.region, type=instance.type),
        instance_index=instance.index,
        register_instance=bool(instance.register_instance),
        role_core=instance.role_core,
        role_load_balancer=instance.role_load_balancer,
        role_vault=instance.role_vault,
        role_worker=instance.role_worker,
        ssh_key_names=instance.ssh_key_names,
        etcd_proxy=instance.etcd_proxy,
        vpn_cidr=instance.vpn_cidr,
        vpn_address=instance.vpn_address,
        http_proxy=instance.http_proxy,
    )

    if instance.cluster:
        _, values = load_cluster_reference(instance.cluster, settings.clusters_dir, require_profile=True)
        options.apply_values(values)

    options.apply_values(_settings_values(settings, instance.register_instance))

    if instance.prefix:
        options.setup_names(instance.prefix, name, domain)

    return options


def _settings_values(settings: QuarkSettings, register_instance: bool | None) -> dict:
    values = {
        'domain': settings.domain,
        'image': settings.image,
        'region': settings.region,
        'type': settings.instance_type,
        'ssh-key': settings.ssh_key_names,
        'ssh-key-github-account': settings.ssh_key_github_account,
        'gluon-image': settings.gluon_image,
        'reboot-strategy': settings.reboot_strategy,
        'private-registry-url': settings.private_registry_url,
        'private-registry-username': settings.private_registry_username,
        'private-registry-password': settings.private_registry_password,
        'vault-addr': settings.vault_address,
        'vault-cacert': settings.vault_cacert,
    }

    if register_instance is None:
        values['register-instance'] = settings.register_instances

    return {k: v for k, v in values.items() if v not in ('', [], None)}


@router.post('/clusters/', response_model=ClusterCreateResponseSchema, status_code=status.HTTP_202_ACCEPTED)
async def create_cluster(
    cluster: ClusterCreateSchema,
    background_tasks: BackgroundTasks,
    cluster_manager: ClusterManager = Depends(get_cluster_manager),
    settings: QuarkSettings = Depends(get_settings),
) -> ClusterCreateResponseSchema:
    logger.info(f'Received request to create cluster: {cluster.name}.{cluster.domain}')

    options = cluster_manager.prepare_cluster_options(_cluster_options(cluster, settings))

    info = options.cluster_info

    background_tasks.add_task(_run_logged, f'Creating cluster {info}', lambda: cluster_manager.create_cluster(options))

    return {'name': str(info), 'status': OperationStatus.CREATING}


@router.get('/clusters/{domain}/{name}/instances', response_model=list[InstanceSchema])
async def get_instances(
    domain: str, name: str, cluster_manager: ClusterManager = Depends(get_cluster_manager)
) -> list[InstanceSchema]:
    instances = await cluster_manager.get_instances(ClusterInfo(domain=domain, name=name))

    return [InstanceSchema.model_validate(x) for x in instances]


@router.post('/clusters/{domain}/{name}/update', response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def update_cluster(
    domain: str,
    name: str,
    background_tasks: BackgroundTasks,
    cluster_manager: ClusterManager = Depends(get_cluster_manager),
) -> dict:
    info = ClusterInfo(domain=domain, name=name)

    background_tasks.add_task(_run_logged, f'Updating cluster {info}', lambda: cluster_manager.update_cluster(info))

    return {'name': str(info), 'status': OperationStatus.UPDATING}


@router.delete('/clusters/{domain}/{name}', status_code=status.HTTP_200_OK)
async def delete_cluster(
    domain: str, name: str, cluster_manager: ClusterManager = Depends(get_cluster_manager)
) -> dict:
    info = ClusterInfo(domain=domain, name=name)

    await cluster_manager.delete_cluster(info)

    return {'name': str(info), 'status': OperationStatus.DONE}


@router.post('/clusters/{domain}/{name}/instances', response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def add_instance(
    domain: str,
    name: str,
    instance: InstanceCreateSchema,
    background_tasks: BackgroundTasks,
    cluster_manager: ClusterManager = Depends(get_cluster_manager),
    settings: QuarkSettings = Depends(get_settings),
) -> dict:
    options = _instance_options(domain, name, instance, settings)

    background_tasks.add_task(
        _run_logged, f'Adding instance to {name}.{domain}', lambda: cluster_manager.add_instance(options)
    )

    return {'name': f'{name}.{domain}', 'status': OperationStatus.CREATING}


@router.delete('/clusters/{domain}/{name}/instances/{prefix}', status_code=status.HTTP_200_OK)
async def remove_instance(
    domain: str,
    name: str,
    prefix: str,
    remove_from_etcd: bool = False,
    cluster_manager: ClusterManager = Depends(get_cluster_manager),
) -> dict:
    info = ClusterInstanceInfo(domain=domain, name=name, prefix=prefix)

    await cluster_manager.remove_instance(info, remove_from_etcd=remove_from_etcd)

    return {'name': str(info), 'status': OperationStatus.DONE}


@router.post('/blueprints/resolve', response_model=BlueprintSchema)
def resolve_blueprint(blueprint: BlueprintResolveSchema) -> BlueprintSchema:
    cluster = parse_cluster(blueprint.content, blueprint.format)

    return BlueprintSchema(
        stack=cluster.stack,
        domain=cluster.domain,
        tunnel=cluster.tunnel,
        instance_count=cluster.instance_count,
        network=cluster.network,
        values=cluster.resolve_profile(blueprint.profile),
    )
