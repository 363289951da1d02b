from quark.api.schemas.cluster import (
    BlueprintResolveSchema,
    BlueprintSchema,
    ClusterCreateResponseSchema,
    ClusterCreateSchema,
    InstanceCreateSchema,
    InstanceSchema,
)
