from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from policy_engine.authz.schemas import ConditionConfig, GrantTableConfig, RoleConfig
from policy_engine.security.context import freeze_value
from policy_engine.security.errors import ConfigurationError
from policy_engine.security.types import Condition, PermissionGrant, Role, permission_key


logger = logging.getLogger("policy_engine.grants")


def _to_condition(config: ConditionConfig) -> Condition:
    return Condition(
        field=config.field,
        operator=config.operator,
        value=freeze_value(config.value),
        value_from=config.value_from,
    )


class PermissionGrantTable:
    """Static role -> grants lookup, validated and flattened once at load time."""

    def __init__(
        self,
        roles: Mapping[str, Role],
        *,
        resources: frozenset[str],
        actions: frozenset[str],
        sensitive: frozenset[str] = frozenset(),
    ) -> None:
        self._roles = dict(roles)
        self._resources = resources
        self._actions = actions
        self._sensitive = sensitive
        self._flattened = {role_id: self._flatten(role_id) for role_id in self._roles}

    @classmethod
    def from_config(cls, raw: Mapping[str, Any] | GrantTableConfig) -> PermissionGrantTable:
        try:
            config = raw if isinstance(raw, GrantTableConfig) else GrantTableConfig.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid grant table: {exc}") from exc

        resources = frozenset(config.resources)
        actions = frozenset(config.actions)

        sensitive: set[str] = set()
        for entry in config.sensitive:
            resource, _, action = entry.partition(":")
            cls._check_vocabulary(resource, action, resources, actions, where=f"sensitive entry '{entry}'")
            sensitive.add(permission_key(resource, action))

        roles: dict[str, Role] = {}
        for role_config in config.roles:
            if role_config.id in roles:
                raise ConfigurationError(f"Duplicate role '{role_config.id}'")
            roles[role_config.id] = cls._build_role(role_config, resources, actions)

        for role in roles.values():
            if role.parent is not None and role.parent not in roles:
                raise ConfigurationError(f"Role '{role.role_id}' inherits from unknown role '{role.parent}'")

        table = cls(roles, resources=resources, actions=actions, sensitive=frozenset(sensitive))
        logger.info("authz.grant_table.loaded", extra={"entries": len(roles)})
        return table

    @classmethod
    def from_json_file(cls, path: str | Path) -> PermissionGrantTable:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read grant table from '{path}': {exc}") from exc
        return cls.from_config(raw)

    @staticmethod
    def _check_vocabulary(
        resource: str,
        action: str,
        resources: frozenset[str],
        actions: frozenset[str],
        *,
        where: str,
    ) -> None:
        if resource not in resources:
            raise ConfigurationError(f"Unknown resource '{resource}' in {where}")
        if action not in actions:
            raise ConfigurationError(f"Unknown action '{action}' in {where}")

    @classmethod
    def _build_role(cls, config: RoleConfig, resources: frozenset[str], actions: frozenset[str]) -> Role:
        grants: list[PermissionGrant] = []
        for grant_config in config.grants:
            cls._check_vocabulary(
                grant_config.resource,
                grant_config.action,
                resources,
                actions,
                where=f"role '{config.id}'",
            )
            grants.append(
                PermissionGrant(
                    resource=grant_config.resource,
                    action=grant_config.action,
                    minimum_scope=grant_config.scope,
                    conditions=tuple(_to_condition(item) for item in grant_config.conditions),
                    risk_weight=grant_config.risk_weight,
                )
            )
        return Role(role_id=config.id, grants=tuple(grants), parent=config.parent, description=config.description)

    def _flatten(self, role_id: str) -> tuple[PermissionGrant, ...]:
        grants: list[PermissionGrant] = []
        seen: list[str] = []
        current: str | None = role_id
        while current is not None:
            if current in seen:
                chain = " -> ".join([*seen, current])
                raise ConfigurationError(f"Role inheritance cycle: {chain}")
            seen.append(current)
            role = self._roles[current]
            grants.extend(role.grants)
            current = role.parent
        return tuple(grants)

    @property
    def resources(self) -> frozenset[str]:
        return self._resources

    @property
    def actions(self) -> frozenset[str]:
        return self._actions

    @property
    def role_ids(self) -> tuple[str, ...]:
        return tuple(self._roles)

    def has_role(self, role_id: str) -> bool:
        return role_id in self._roles

    def get_role(self, role_id: str) -> Role | None:
        return self._roles.get(role_id)

    def grants_for(self, role_id: str) -> tuple[PermissionGrant, ...]:
        """Own grants first, then inherited ones; unknown roles hold nothing."""

        return self._flattened.get(role_id, ())

    def is_known(self, resource: str, action: str) -> bool:
        return resource in self._resources and action in self._actions

    def is_sensitive(self, resource: str, action: str) -> bool:
        return permission_key(resource, action) in self._sensitive
