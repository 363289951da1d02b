from pathlib import Path
from typing import Any

import hcl
import yaml

from quark.core.cluster.blueprint import ClusterBlueprint, Profile, QuarkOptions
from quark.core.exceptions import NotFoundError, ValidationError
from quark.core.utils import setup_logger

logger = setup_logger('ClusterParser')

CLUSTER_FILE_EXTENSION = '.hcl'

_IGNORED_BLOCKS = ('default-options', 'docker', 'orchestrator', 'fleet', 'kubernetes')
_STRING_FIELDS = {'stack': 'stack', 'domain': 'domain', 'tunnel': 'tunnel', 'network': 'network'}
_INT_FIELDS = {'instance-count': 'instance_count'}


def _to_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        return int(value)

    if isinstance(value, int):
        return value

    if isinstance(value, float) and value.is_integer():
        return int(value)

    if isinstance(value, str):
        try:
            return int(value.strip() or 0)
        except ValueError as e:
            raise ValidationError(f"'{key}' must be an integer, got '{value}'") from e

    raise ValidationError(f"'{key}' must be an integer, got {type(value).__name__}")


def _to_str(value: Any, key: str) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'

    if isinstance(value, str | int | float):
        return str(value)

    raise ValidationError(f"'{key}' must be a string, got {type(value).__name__}")


def _objects(value: Any) -> list[dict]:
    # Repeated blocks come back as a list of objects.
    if isinstance(value, dict):
        return [value]

    if isinstance(value, list) and all(isinstance(x, dict) for x in value):
        return value

    raise TypeError


def _parse_quark_options(value: Any, stack: str) -> QuarkOptions:
    try:
        blocks = _objects(value)
    except TypeError:
        raise ValidationError(f"quark of cluster '{stack}' is not an object") from None

    options = QuarkOptions()

    for block in blocks:
        options.default_values = {k: v for k, v in block.items() if k != 'profile'}

        if 'profile' not in block:
            continue

        try:
            profile_blocks = _objects(block['profile'])
        except TypeError:
            raise ValidationError('profile is not an object') from None

        for profile_block in profile_blocks:
            for name, values in profile_block.items():
                if not isinstance(values, dict):
                    raise ValidationError(f"profile '{name}' is not an object")

                options.profiles.append(Profile(name=name, values=dict(values)))

    return options


def _parse_cluster_block(stack: str, body: Any) -> ClusterBlueprint:
    if not isinstance(body, dict):
        raise ValidationError(f"cluster '{stack}' value: should be an object")

    blueprint = ClusterBlueprint(stack=stack, domain='')

    for key, value in body.items():
        if key in _IGNORED_BLOCKS:
            continue

        if key == 'quark':
            blueprint.quark_options = _parse_quark_options(value, stack)
        elif key in _STRING_FIELDS:
            setattr(blueprint, _STRING_FIELDS[key], _to_str(value, key))
        elif key in _INT_FIELDS:
            setattr(blueprint, _INT_FIELDS[key], _to_int(value, key))
        else:
            raise ValidationError(f"Unknown key '{key}' in cluster '{stack}'")

    # The block label wins over an explicit stack key.
    blueprint.stack = stack

    return blueprint


def _load_document(content: str, document_format: str) -> Any:
    try:
        if document_format == 'hcl':
            return hcl.loads(content)
        if document_format in ('yaml', 'yml'):
            return yaml.safe_load(content)
    except (ValueError, yaml.YAMLError) as e:
        raise ValidationError(f'Failed to parse {document_format} cluster document') from e

    raise ValidationError(f"Unsupported cluster document format '{document_format}'")


def parse_cluster(content: str, document_format: str = 'hcl') -> ClusterBlueprint:
    document = _load_document(content, document_format)

    if not isinstance(document, dict):
        raise ValidationError('error parsing: root should be an object')

    if 'cluster' not in document:
        raise ValidationError("'cluster' stanza not found")

    clusters = document['cluster']

    if not isinstance(clusters, dict) or len(clusters) != 1:
        raise ValidationError("only one 'cluster' block allowed")

    stack, body = next(iter(clusters.items()))

    blueprint = _parse_cluster_block(stack, body)
    blueprint.set_defaults()
    blueprint.validate()

    return blueprint


def parse_cluster_file(path: Path | str) -> ClusterBlueprint:
    path = Path(path)

    try:
        content = path.read_text(encoding='utf-8')
    except FileNotFoundError as e:
        raise NotFoundError(f'Cluster file {path} not found') from e

    document_format = path.suffix.lstrip('.').lower() or 'hcl'

    logger.info(f'Parsing cluster document {path}')

    return parse_cluster(content, document_format)


def resolve_cluster_path(name: str, clusters_dir: Path, extension: str = CLUSTER_FILE_EXTENSION) -> Path:
    candidate = Path(name)

    if candidate.is_file():
        return candidate

    candidate = Path(clusters_dir, f'{name}{extension}')

    if candidate.is_file():
        return candidate

    raise NotFoundError(f"Cluster '{name}' not found in {clusters_dir}")


def load_cluster_reference(
    reference: str, clusters_dir: Path, require_profile: bool = False
) -> tuple[ClusterBlueprint, dict[str, Any]]:
    """Load ``profile@cluster`` (or just ``cluster``) and resolve the profile against it."""
    profile, _, cluster = reference.rpartition('@')

    if not cluster:
        raise ValidationError(f"Invalid cluster reference '{reference}'")

    if require_profile and not profile:
        raise ValidationError(f"Cluster reference '{reference}' must name a profile (profile@cluster)")

    blueprint = parse_cluster_file(resolve_cluster_path(cluster, clusters_dir))

    return blueprint, blueprint.resolve_profile(profile)
