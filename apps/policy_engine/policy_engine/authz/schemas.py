from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from policy_engine.security.types import ConditionOperator, Scope


class ConditionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field: str = Field(min_length=1)
    operator: ConditionOperator
    value: Any = None
    value_from: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _check_operand(self) -> ConditionConfig:
        if self.value is not None and self.value_from is not None:
            raise ValueError("condition accepts either value or value_from, not both")
        return self


class GrantConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resource: str = Field(min_length=1)
    action: str = Field(min_length=1)
    scope: Scope = Scope.OWN
    risk_weight: int = Field(default=1, ge=0)
    conditions: list[ConditionConfig] = Field(default_factory=list)


class RoleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    description: str | None = None
    parent: str | None = None
    grants: list[GrantConfig] = Field(default_factory=list)


class GrantTableConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resources: list[str] = Field(min_length=1)
    actions: list[str] = Field(min_length=1)
    sensitive: list[str] = Field(default_factory=list)
    roles: list[RoleConfig] = Field(default_factory=list)

