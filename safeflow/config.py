from __future__ import annotations

import os
from enum import Enum
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_DUE_SOON_HOURS,
    DEFAULT_INVESTIGATION_HOURS,
    DEFAULT_MAX_WRITE_ATTEMPTS,
    DEFAULT_STEP_TIME_LIMIT_HOURS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
)
from .contracts import Capability, WorkflowDefinition, WorkflowStepDef


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration for state-change events."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = Field(default_factory=RedisConfig)


class EngineConfig(BaseModel):
    """Timing and retry settings for the lifecycle engine."""

    due_soon_hours: float = DEFAULT_DUE_SOON_HOURS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    max_write_attempts: int = Field(default=DEFAULT_MAX_WRITE_ATTEMPTS, ge=1)


class ExtensionPolicy(str, Enum):
    AUTO = "auto"
    APPROVAL = "approval"


class FamilyConfig(BaseModel):
    """Workflow definitions and role capabilities for one resource family."""

    approval_flow: List[WorkflowStepDef]
    high_risk_approval_flow: List[WorkflowStepDef] = Field(default_factory=list)
    closure_flow: List[WorkflowStepDef]
    capabilities: Dict[str, List[Capability]] = Field(default_factory=dict)
    extension_policy: Optional[ExtensionPolicy] = None
    default_duration_hours: Optional[float] = Field(default=None, gt=0)
    checklists: Dict[str, List[str]] = Field(default_factory=dict)

    @field_validator("approval_flow", "closure_flow")
    @classmethod
    def _valid_flow(cls, steps: List[WorkflowStepDef]) -> List[WorkflowStepDef]:
        return WorkflowDefinition(steps=steps).steps

    @field_validator("high_risk_approval_flow")
    @classmethod
    def _valid_optional_flow(cls, steps: List[WorkflowStepDef]) -> List[WorkflowStepDef]:
        return WorkflowDefinition(steps=steps).steps if steps else steps

    def roles_with(self, capability: Capability) -> List[str]:
        return [role for role, caps in self.capabilities.items() if capability in caps]

    def has_capability(self, role: str, capability: Capability) -> bool:
        return capability in self.capabilities.get(role, [])

    def resolved_extension_policy(self) -> ExtensionPolicy:
        """Explicit policy, else approval only when some role may approve."""
        if self.extension_policy is not None:
            return self.extension_policy
        if self.roles_with(Capability.APPROVE_EXTENSION):
            return ExtensionPolicy.APPROVAL
        return ExtensionPolicy.AUTO


def _step(order: int, role: str, label: str, *alternates: str, hours: Optional[float] = None) -> WorkflowStepDef:
    return WorkflowStepDef(
        order=order,
        role=role,
        label=label,
        time_limit_hours=hours,
        alternate_roles=list(alternates),
    )


def default_families() -> Dict[str, FamilyConfig]:
    """Out-of-the-box workflows for permits, hazard studies and incidents."""
    approval_hours = DEFAULT_STEP_TIME_LIMIT_HOURS
    return {
        "permit": FamilyConfig(
            approval_flow=[
                _step(1, "hod", "HOD Approval", hours=approval_hours),
                _step(2, "safety_incharge", "Safety Approval", hours=approval_hours),
            ],
            high_risk_approval_flow=[
                _step(1, "plant_head", "Plant Head Initial Approval", hours=approval_hours),
                _step(2, "hod", "HOD Approval", hours=approval_hours),
                _step(3, "safety_incharge", "Safety Approval", hours=approval_hours),
            ],
            closure_flow=[
                _step(1, "hod", "Closure Approval", "safety_incharge", "plant_head"),
            ],
            capabilities={
                "hod": [Capability.STOP_WORK, Capability.SUBMIT_CLOSURE, Capability.APPROVE_EXTENSION],
                "safety_incharge": [
                    Capability.STOP_WORK,
                    Capability.SUBMIT_CLOSURE,
                    Capability.APPROVE_EXTENSION,
                ],
                "plant_head": [Capability.STOP_WORK, Capability.SUBMIT_CLOSURE],
            },
            checklists={
                "hot_work": [
                    "Fire watch posted",
                    "Hot work permit displayed",
                    "Fire extinguisher available",
                    "Area cleared of combustibles",
                    "Welding screens in place",
                ],
                "cold_work": [
                    "Area isolated",
                    "Tools inspected",
                    "PPE verified",
                    "Emergency contacts available",
                ],
                "confined_space": [
                    "Atmospheric testing completed",
                    "Ventilation adequate",
                    "Entry supervisor assigned",
                    "Rescue plan in place",
                    "Communication established",
                ],
                "working_at_height": [
                    "Fall protection system inspected",
                    "Anchor points verified",
                    "Weather conditions acceptable",
                    "Rescue plan available",
                ],
                "electrical": [
                    "LOTO procedures followed",
                    "Electrical isolation verified",
                    "Testing equipment calibrated",
                    "Qualified electrician present",
                ],
                "excavation": [
                    "Underground utilities located",
                    "Soil conditions assessed",
                    "Shoring/sloping adequate",
                    "Entry/exit routes clear",
                ],
            },
        ),
        "hazard_study": FamilyConfig(
            approval_flow=[
                _step(1, "safety_incharge", "Review & Approval", hours=168),
            ],
            closure_flow=[
                _step(1, "safety_incharge", "Study Closure", "plant_head"),
            ],
            capabilities={
                "safety_incharge": [Capability.SUBMIT_CLOSURE],
                "plant_head": [Capability.SUBMIT_CLOSURE, Capability.APPROVE_EXTENSION],
            },
        ),
        "incident": FamilyConfig(
            approval_flow=[
                _step(1, "hod", "Assign Investigation Team", "admin", hours=approval_hours),
            ],
            closure_flow=[
                _step(1, "hod", "Incident Closure", "admin", "investigation_team"),
            ],
            capabilities={
                "hod": [Capability.SUBMIT_CLOSURE, Capability.APPROVE_EXTENSION],
                "admin": [Capability.SUBMIT_CLOSURE, Capability.APPROVE_EXTENSION],
                "investigation_team": [Capability.SUBMIT_CLOSURE],
            },
            default_duration_hours=DEFAULT_INVESTIGATION_HOURS,
        ),
    }


class SafeflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    database_url: Optional[str] = None
    engine: EngineConfig = Field(default_factory=EngineConfig)
    families: Dict[str, FamilyConfig] = Field(default_factory=default_families)

    @field_validator("families")
    @classmethod
    def _fill_default_families(cls, families: Dict[str, FamilyConfig]) -> Dict[str, FamilyConfig]:
        merged = default_families()
        merged.update(families)
        return merged


def load_config(path: Optional[str] = None) -> SafeflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SAFEFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("SAFEFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = SafeflowConfig(**data)
    else:
        config = SafeflowConfig()

    env_db_url = os.getenv("SAFEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_transport = os.getenv("SAFEFLOW_TRANSPORT")
    if env_transport:
        config.transport.backend = env_transport.lower()
    return config
