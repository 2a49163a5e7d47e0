"""
Container management for dbsandbox.

- models.py: ContainerSpec, ContainerHandle and friends
- readiness.py: log based readiness predicates
- runtime.py: Docker SDK adapter
- orchestrator.py: container lifecycle with readiness waiting
"""

from .models import ContainerHandle, ContainerSpec, ContainerState, Mount, MountType
from .orchestrator import ContainerOrchestrator
from .readiness import ReadinessPredicate
from .runtime import ENVIRONMENT_LABEL, MANAGED_LABEL, DockerRuntime

__all__ = [
    "ContainerHandle",
    "ContainerOrchestrator",
    "ContainerSpec",
    "ContainerState",
    "DockerRuntime",
    "ENVIRONMENT_LABEL",
    "MANAGED_LABEL",
    "Mount",
    "MountType",
    "ReadinessPredicate",
]
