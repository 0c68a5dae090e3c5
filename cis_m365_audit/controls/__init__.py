from typing import Optional

from ..config import AuditConfig, AuditConfigurationError
from .base import (
    BaseControl,
    ExchangePolicyControl,
    Expect,
    GraphSettingsControl,
    ManualControl,
    RulePolicyControl,
    compare_fields,
    select_effective_rule,
)
from . import admin_center, defender, entra, exchange, purview, sharepoint, teams

ALL_CONTROLS = [
    *admin_center.CONTROLS,
    *defender.CONTROLS,
    *purview.CONTROLS,
    *entra.CONTROLS,
    *exchange.CONTROLS,
    *sharepoint.CONTROLS,
    *teams.CONTROLS,
]

CONTROLS_BY_ID = {c.control_id: c for c in ALL_CONTROLS}


def build_controls(config: Optional[AuditConfig] = None) -> list[BaseControl]:
    """
    Instantiate the controls selected by ``config`` in benchmark order.
    Explicit control ids win over sections; unknown ids are a configuration error.
    """
    config = config or AuditConfig()
    if config.controls:
        unknown = [c for c in config.controls if c not in CONTROLS_BY_ID]
        if unknown:
            raise AuditConfigurationError(f"Unknown control id(s): {', '.join(unknown)}")
        wanted = set(config.controls)
        selected = [c for c in ALL_CONTROLS if c.control_id in wanted]
    elif config.sections:
        sections = {str(s) for s in config.sections}
        selected = [c for c in ALL_CONTROLS if c.control_id.split(".")[0] in sections]
        if not selected:
            raise AuditConfigurationError(f"No controls in section(s): {', '.join(sorted(sections))}")
    else:
        selected = list(ALL_CONTROLS)
    return [cls(config) for cls in selected]


__all__ = [
    "BaseControl",
    "ExchangePolicyControl",
    "Expect",
    "GraphSettingsControl",
    "ManualControl",
    "RulePolicyControl",
    "compare_fields",
    "select_effective_rule",
    "ALL_CONTROLS",
    "CONTROLS_BY_ID",
    "build_controls",
]
