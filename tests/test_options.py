from pathlib import Path

import pytest
import yaml

from quark.core.cluster import load_cluster_reference
from quark.core.config import DEFAULT_GLUON_IMAGE
from quark.core.exceptions import ValidationError
from quark.core.providers.models import ClusterInfo, ClusterInstance, ClusterInstanceList, parse_vpn_network
from quark.core.providers.options import CreateClusterOptions, CreateInstanceOptions, InstanceConfig, vpn_address
from quark.core.template_loader import template_loader

CLUSTERS_DIR = Path(__file__).parent.parent / 'config' / 'clusters'


def cluster_options(**kwargs) -> CreateClusterOptions:
    values = {
        'cluster_info': ClusterInfo(domain='pulcy.com', name='alpha'),
        'instance_config': InstanceConfig(image='ubuntu-22.04', region='fsn1', type='cx22'),
        'instance_count': 3,
        'ssh_key_names': ['ops'],
        'vpn_cidr': '192.168.35.0/24',
    }
    values.update(kwargs)

    return CreateClusterOptions(**values)


class TestVpnAddress:
    @pytest.mark.parametrize(
        "index, expected",
        [
            (1, "192.168.35.1"),
            (2, "192.168.35.2"),
            (254, "192.168.35.254"),
        ],
    )
    def test_address_of_index(self, index, expected):
        assert vpn_address('192.168.35.0/24', index) == expected

    def test_host_bits_in_cidr_are_ignored(self):
        assert vpn_address('192.168.35.17/24', 3) == '192.168.35.3'

    @pytest.mark.parametrize("index", [0, 255, -1, 300])
    def test_index_out_of_range(self, index):
        with pytest.raises(ValidationError, match="range of 1..254"):
            vpn_address('192.168.35.0/24', index)

    @pytest.mark.parametrize("cidr", ["192.168.0.0/16", "10.0.0.0/25", "fd00::/24", "not-a-cidr", ""])
    def test_invalid_network(self, cidr):
        with pytest.raises(ValidationError):
            parse_vpn_network(cidr)


class TestCreateClusterOptions:
    def test_instance_options_follow_index(self):
        options = cluster_options()

        instances = [options.new_instance_options(is_core=True, is_lb=True, index=i) for i in range(1, 4)]

        assert [x.vpn_address for x in instances] == ['192.168.35.1', '192.168.35.2', '192.168.35.3']
        assert [x.instance_index for x in instances] == [1, 2, 3]
        assert all(x.cluster_name == 'alpha.pulcy.com' for x in instances)
        assert all(x.instance_name.endswith('.alpha.pulcy.com') for x in instances)
        assert len({x.prefix for x in instances}) == 3

    def test_prefix_is_stable_per_index(self):
        options = cluster_options()

        first = options.new_instance_options(is_core=True, is_lb=False, index=2)
        second = options.new_instance_options(is_core=False, is_lb=True, index=2)

        assert first.instance_name == second.instance_name
        assert options.prefixes == sorted(options.prefixes)

    def test_instance_options_without_vpn(self):
        options = cluster_options(vpn_cidr='')

        assert options.new_instance_options(is_core=True, is_lb=True, index=1).vpn_address == ''

    @pytest.mark.parametrize("index", [0, 4])
    def test_index_out_of_range(self, index):
        with pytest.raises(ValidationError):
            cluster_options().new_instance_options(is_core=True, is_lb=True, index=index)

    def test_instance_options_copy_cluster_values(self):
        options = cluster_options(register_instance=True, http_proxy='http://proxy:3128')

        instance = options.new_instance_options(is_core=True, is_lb=False, index=1)
        instance.ssh_key_names.append('other')
        instance.instance_config.type = 'cx52'

        assert instance.register_instance is True
        assert instance.http_proxy == 'http://proxy:3128'
        assert options.ssh_key_names == ['ops']
        assert options.instance_config.type == 'cx22'

    def test_validate_success(self):
        cluster_options().validate()

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({'cluster_info': ClusterInfo(domain='', name='alpha')}, 'domain'),
            ({'cluster_info': ClusterInfo(domain='pulcy.com', name='')}, 'name'),
            ({'cluster_info': ClusterInfo(domain='pulcy.com', name='al.pha')}, 'Invalid characters'),
            ({'instance_config': InstanceConfig(region='fsn1', type='cx22')}, 'image'),
            ({'ssh_key_names': []}, 'SSH key'),
            ({'instance_count': 0}, 'instance count'),
            ({'gluon_image': ''}, 'gluon-image'),
            ({'vpn_cidr': '192.168.0.0/16'}, '/24'),
            (
                {'instance_config': InstanceConfig(image='coreos', region='fsn1', type='cx22', min_os_version='stable')},
                'Invalid OS version',
            ),
            ({'vault_cacert': '/nonexistent/vault.crt'}, 'vault-cacert'),
        ],
    )
    def test_validate_failure(self, kwargs, message):
        with pytest.raises(ValidationError, match=message):
            cluster_options(**kwargs).validate()

    def test_apply_values_fills_only_unset_fields(self):
        options = CreateClusterOptions(cluster_info=ClusterInfo(domain='', name='alpha'))

        options.apply_values({
            'domain': 'pulcy.com',
            'name': 'other',
            'image': 'ubuntu-22.04',
            'instance-count': '5',
            'ssh-key': 'ops, deploy',
            'register-instance': 'true',
            'tinc-cidr': '192.168.35.0/24',
            'gluon-image': 'pulcy/gluon:latest',
            'unknown-flag': 'ignored',
        })

        assert options.cluster_info == ClusterInfo(domain='pulcy.com', name='alpha')
        assert options.instance_config.image == 'ubuntu-22.04'
        assert options.instance_count == 5
        assert options.ssh_key_names == ['ops', 'deploy']
        assert options.register_instance is True
        assert options.vpn_cidr == '192.168.35.0/24'
        assert options.gluon_image == 'pulcy/gluon:latest'

    def test_apply_values_keeps_explicit_values(self):
        options = cluster_options(gluon_image='pulcy/gluon:custom')

        options.apply_values({'instance-count': 7, 'gluon-image': 'pulcy/gluon:latest', 'ssh-key': ['x']})

        assert options.instance_count == 3
        assert options.gluon_image == 'pulcy/gluon:custom'
        assert options.ssh_key_names == ['ops']

    def test_apply_values_cluster_id(self):
        options = cluster_options()

        options.apply_values({'cluster-id': 'cluster-alpha', 'min-os-version': '1010.5.0'})

        assert options.cluster_info == ClusterInfo(domain='pulcy.com', name='alpha', id='cluster-alpha')
        assert options.instance_config.min_os_version == '1010.5.0'
        assert options.new_instance_options(is_core=True, is_lb=True, index=1).instance_config.min_os_version == '1010.5.0'

    def test_apply_values_invalid_integer(self):
        options = CreateClusterOptions(cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'))

        with pytest.raises(ValidationError, match='integer'):
            options.apply_values({'instance-count': 'many'})


class TestCreateInstanceOptions:
    def test_fleet_metadata_and_roles(self):
        options = CreateInstanceOptions(
            cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'),
            instance_config=InstanceConfig(region='fsn1'),
            instance_index=3,
            role_core=True,
            role_load_balancer=True,
        )

        assert options.fleet_metadata() == 'region=fsn1,odd=true,core=true,lb=true'
        assert options.roles() == 'core,lb'

    def test_fleet_metadata_even_worker(self):
        options = CreateInstanceOptions(
            cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'),
            instance_config=InstanceConfig(region='nbg1'),
            instance_index=2,
            role_vault=True,
            role_worker=True,
        )

        assert options.fleet_metadata() == 'region=nbg1,even=true,vault=true,worker=true'
        assert options.roles() == 'vault,worker'

    def test_setup_names_generates_prefix(self):
        options = CreateInstanceOptions(cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'))

        options.setup_names('', 'alpha', 'pulcy.com')

        assert options.cluster_name == 'alpha.pulcy.com'
        assert len(options.prefix) == 6
        assert options.instance_name == f'{options.prefix}.alpha.pulcy.com'

    def test_validate_requires_vpn_address_with_cidr(self):
        options = CreateInstanceOptions(
            cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'),
            instance_config=InstanceConfig(image='ubuntu-22.04', region='fsn1', type='cx22'),
            ssh_key_names=['ops'],
            vpn_cidr='192.168.35.0/24',
        )
        options.setup_names('abc123', 'alpha', 'pulcy.com')

        with pytest.raises(ValidationError, match='no VPN address'):
            options.validate()

        options.vpn_address = '192.168.35.9'
        options.validate()

    def test_apply_values_instance_flags(self):
        options = CreateInstanceOptions(cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'))

        options.apply_values({
            'role-core': 'true',
            'role-lb': True,
            'role-vault': True,
            'role-worker': True,
            'etcd-proxy': True,
            'index': '4',
            'tinc-ipv4': '192.168.35.40',
            'min-os-version': '1010.5.0',
            'cluster-id': 'ignored',
        })

        assert options.roles() == 'core,lb,vault,worker'
        assert options.etcd_proxy is True
        assert options.instance_index == 4
        assert options.vpn_address == '192.168.35.40'
        assert options.instance_config.min_os_version == '1010.5.0'
        assert options.cluster_info.id == ''

    def test_apply_values_from_worker_profile(self):
        _, values = load_cluster_reference('worker@alpha', CLUSTERS_DIR, require_profile=True)
        options = CreateInstanceOptions(cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'))

        options.apply_values(values)

        assert options.role_worker is True
        assert options.role_vault is False
        assert options.instance_config.type == 'cx42'
        assert options.instance_config.region == 'fsn1'
        assert options.vpn_cidr == '192.168.35.0/24'
        assert options.register_instance is True
        assert options.fleet_metadata() == 'region=fsn1,even=true,worker=true'

    def test_vault_certificate_in_cloud_config(self, tmp_path):
        certificate = tmp_path / 'vault.crt'
        certificate.write_text('-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n')

        options = CreateInstanceOptions(
            cluster_info=ClusterInfo(domain='pulcy.com', name='alpha', id='c1'),
            instance_config=InstanceConfig(image='ubuntu-22.04', region='fsn1', type='cx22'),
            ssh_key_names=['ops'],
            vault_cacert=str(certificate),
        )
        options.setup_names('abc123', 'alpha', 'pulcy.com')
        options.validate()

        rendered = template_loader.render_template('cloud-config.yml', 'cloud-init', options.cloud_config_values())
        files = {x['path']: x for x in yaml.safe_load(rendered)['write_files']}

        assert files['/etc/quark/vault.crt']['content'] == certificate.read_text()
        assert files['/etc/quark/vault.crt']['permissions'] == '0400'

    def test_unreadable_vault_certificate(self, tmp_path):
        options = CreateInstanceOptions(
            cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'), vault_cacert=str(tmp_path / 'missing.crt')
        )

        with pytest.raises(ValidationError, match='vault-cacert'):
            options.vault_certificate()

    def test_defaults(self):
        options = CreateInstanceOptions(cluster_info=ClusterInfo(domain='pulcy.com', name='alpha'))

        assert options.gluon_image == DEFAULT_GLUON_IMAGE
        assert options.instance_config.min_os_version == '835.13.0'


class TestClusterInstanceList:
    @staticmethod
    def instances(*addresses: str) -> ClusterInstanceList:
        return ClusterInstanceList(
            ClusterInstance(id=str(i), name=f'p{i}.alpha.pulcy.com', private_ip=f'10.0.0.{i}', vpn_address=address)
            for i, address in enumerate(addresses, start=1)
        )

    def test_next_free_above_highest_used(self):
        instances = self.instances('192.168.35.1', '192.168.35.2', '192.168.35.3')

        assert instances.next_free_vpn_address('192.168.35.0/24') == '192.168.35.4'

    def test_next_free_fills_gap_below_highest(self):
        instances = self.instances('192.168.35.1', '192.168.35.3')

        assert instances.next_free_vpn_address('192.168.35.0/24') == '192.168.35.4'

    def test_next_free_on_empty_list(self):
        assert ClusterInstanceList().next_free_vpn_address('192.168.35.0/24') == '192.168.35.1'

    def test_next_free_wraps_to_lowest(self):
        instances = self.instances('192.168.35.254')

        assert instances.next_free_vpn_address('192.168.35.0/24') == '192.168.35.1'

    def test_no_free_address(self):
        instances = self.instances(*(f'192.168.35.{i}' for i in range(1, 255)))

        with pytest.raises(ValidationError, match='No free VPN address'):
            instances.next_free_vpn_address('192.168.35.0/24')

    def test_lookup(self):
        instances = self.instances('192.168.35.1', '192.168.35.2')

        assert instances.find_by_prefix('p2').vpn_address == '192.168.35.2'
        assert instances.find_by_name('p1.alpha.pulcy.com').private_ip == '10.0.0.1'
        assert instances.without(instances[0]) == [instances[1]]
        assert instances.contains(instances[1])
        assert not instances.is_free_vpn_address('192.168.35.2')

    def test_cluster_ip_prefers_vpn_address(self):
        instance = ClusterInstance(id='1', name='a.alpha.pulcy.com', private_ip='10.0.0.1', vpn_address='192.168.35.1')

        assert instance.cluster_ip == '192.168.35.1'
        assert ClusterInstance(id='1', name='a', private_ip='10.0.0.1').cluster_ip == '10.0.0.1'
