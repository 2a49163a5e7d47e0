from .config_manager import (
    ConfigValidationError,
    DataDirMount,
    EscalationPolicy,
    MigrationAddressMode,
    ProvisionConfig,
)

__all__ = [
    'ConfigValidationError',
    'DataDirMount',
    'EscalationPolicy',
    'MigrationAddressMode',
    'ProvisionConfig',
]
