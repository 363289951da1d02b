from quark.core.cluster.blueprint import ClusterBlueprint, Profile, QuarkOptions
from quark.core.cluster.parser import (
    load_cluster_reference,
    parse_cluster,
    parse_cluster_file,
    resolve_cluster_path,
)

__all__ = [
    'ClusterBlueprint',
    'Profile',
    'QuarkOptions',
    'load_cluster_reference',
    'parse_cluster',
    'parse_cluster_file',
    'resolve_cluster_path',
]
