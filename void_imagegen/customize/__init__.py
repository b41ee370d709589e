"""Image customization module.

This module handles:
- Service enablement state (runit services and core-service scripts)
- The ordered list of customization steps applied after installation
- Rendering identity files (motd, product and release descriptors)
"""

from void_imagegen.customize.services import (
    ServiceStateError,
    service_state,
    set_service_state,
)
from void_imagegen.customize.steps import (
    CUSTOMIZATION_STEPS,
    CustomizationContext,
    CustomizationError,
    CustomizationStep,
    StepResult,
    apply_customizations,
    harden_sshd_config,
)

__all__ = [
    "CUSTOMIZATION_STEPS",
    "CustomizationContext",
    "CustomizationError",
    "CustomizationStep",
    "ServiceStateError",
    "StepResult",
    "apply_customizations",
    "harden_sshd_config",
    "service_state",
    "set_service_state",
]
