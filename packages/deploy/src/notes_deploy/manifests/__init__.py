from notes_deploy.stages.apply.resources import ClusterResourceSet

from .app import APP_RESOURCE_SET, app_resources
from .monitoring import MONITORING_RESOURCE_SET, monitoring_resources


def render_yaml(*resource_sets: ClusterResourceSet) -> str:
    """Multi-document YAML for one or more resource sets, in apply order."""
    return "".join(rs.to_yaml() for rs in resource_sets)


__all__ = [
    "APP_RESOURCE_SET",
    "MONITORING_RESOURCE_SET",
    "app_resources",
    "monitoring_resources",
    "render_yaml",
]
