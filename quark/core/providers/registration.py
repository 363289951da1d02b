from quark.core.providers.base_provider import DnsProvider
from quark.core.providers.models import ClusterInstance
from quark.core.providers.options import CreateInstanceOptions
from quark.core.utils import setup_logger

logger = setup_logger('DnsRegistration')


async def register_instance(dns_provider: DnsProvider, options: CreateInstanceOptions, instance: ClusterInstance) -> None:
    """
    Create the DNS records of a freshly created instance.

    The instance name gets A/AAAA records when ``register_instance`` is set, the cluster name gets
    them when the instance is a load-balancer.
    """
    domain = options.cluster_info.domain
    register_cluster = options.role_load_balancer

    logger.info(f"Creating DNS records: '{options.instance_name}', '{options.cluster_name}'")

    for record_type, address in (('A', instance.public_ipv4), ('AAAA', instance.public_ipv6)):
        if not address:
            continue

        if options.register_instance:
            await dns_provider.create_record(domain, record_type, options.instance_name, address)

        if register_cluster:
            await dns_provider.create_record(domain, record_type, options.cluster_name, address)


async def unregister_instance(dns_provider: DnsProvider, instance: ClusterInstance, domain: str) -> None:
    logger.info(f'Removing DNS records of {instance.name}')

    await dns_provider.delete_records(domain, 'A', instance.name)
    await dns_provider.delete_records(domain, 'AAAA', instance.name)

    cluster_name = instance.name.split('.', 1)[1] if '.' in instance.name else instance.name

    if instance.public_ipv4:
        await dns_provider.delete_records(domain, 'A', cluster_name, instance.public_ipv4)

    if instance.public_ipv6:
        await dns_provider.delete_records(domain, 'AAAA', cluster_name, instance.public_ipv6)
