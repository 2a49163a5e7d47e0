"""
dbsandbox testing infrastructure

Provisions isolated, migrated PostgreSQL environments for integration tests
and cleans up whatever a killed test run left behind.
"""

from .cleanup import sweep_orphans
from .provisioner import Environment, Provisioner, provision, provisioned

__all__ = [
    "Environment",
    "Provisioner",
    "provision",
    "provisioned",
    "sweep_orphans",
]
