import copy
from dataclasses import dataclass, field
from typing import Any

from quark.core.config import DEFAULT_INSTANCE_COUNT
from quark.core.exceptions import NotFoundError, ValidationError

RESERVED_PROFILE_KEYS = ('domain', 'name', 'instance-count')


@dataclass
class Profile:
    name: str
    values: dict[str, Any] = field(default_factory=dict)


@dataclass
class QuarkOptions:
    default_values: dict[str, Any] = field(default_factory=dict)
    profiles: list[Profile] = field(default_factory=list)

    def get_profile(self, name: str) -> Profile:
        for profile in self.profiles:
            if profile.name == name:
                return profile

        raise NotFoundError(f"Profile '{name}' not found")

    def resolve_profile(self, name: str) -> dict[str, Any]:
        result = copy.deepcopy(self.default_values)

        if name:
            result.update(copy.deepcopy(self.get_profile(name).values))

        return result


@dataclass
class ClusterBlueprint:
    """
    A deployment target as described by a cluster document.

    ``tunnel`` and ``instance_count`` are filled in once by ``set_defaults`` and never re-derived.
    """

    stack: str
    domain: str
    tunnel: str = ''
    instance_count: int = 0
    network: str = ''
    quark_options: QuarkOptions = field(default_factory=QuarkOptions)

    @classmethod
    def new(cls, domain: str, stack: str, instance_count: int = 0) -> 'ClusterBlueprint':
        blueprint = cls(stack=stack, domain=domain, instance_count=instance_count)
        blueprint.set_defaults()

        return blueprint

    @property
    def cluster_name(self) -> str:
        return f'{self.stack}.{self.domain}'

    def set_defaults(self) -> None:
        if not self.tunnel:
            self.tunnel = f'{self.stack}.{self.domain}'

        if self.instance_count == 0:
            self.instance_count = DEFAULT_INSTANCE_COUNT

    def validate(self) -> None:
        if not self.stack:
            raise ValidationError('Stack missing')

        if not self.domain:
            raise ValidationError('Domain missing')

        if not self.tunnel:
            raise ValidationError('Tunnel missing')

        if self.instance_count == 0:
            raise ValidationError('InstanceCount missing')

        if self.instance_count < 0:
            raise ValidationError('InstanceCount negative')

    def resolve_profile(self, name: str = '') -> dict[str, Any]:
        """
        Merge the named profile onto the default values.

        An empty name yields the default values only. ``domain``, ``name`` and ``instance-count``
        always reflect the blueprint, whatever the profile says.
        """
        result = self.quark_options.resolve_profile(name)

        result['domain'] = self.domain
        result['name'] = self.stack
        result['instance-count'] = self.instance_count

        return result
