from __future__ import annotations

from typing import Any

RESOURCES = [
    "users",
    "quotes",
    "policy",
    "claim",
    "compliance",
    "admin",
    "analytics",
    "billing",
    "reports",
    "carriers",
    "customers",
    "audit_logs",
    "system_settings",
    "underwriting",
    "customer_pii",
    "financial_transactions",
]

ACTIONS = [
    "create",
    "read",
    "update",
    "delete",
    "approve",
    "reject",
    "export",
    "archive",
    "configure",
    "view_sensitive",
    "manage_permissions",
    "underwrite",
    "settle_claim",
    "issue_policy",
    "cancel_policy",
    "access_pii",
    "transfer_funds",
]

DEFAULT_GRANT_TABLE: dict[str, Any] = {
    "resources": RESOURCES,
    "actions": ACTIONS,
    "sensitive": [
        "users:manage_permissions",
        "customer_pii:access_pii",
        "financial_transactions:transfer_funds",
        "audit_logs:read",
    ],
    "roles": [
        {
            "id": "customer",
            "description": "Standard customer access",
            "grants": [
                {"resource": "quotes", "action": "read", "scope": "own", "risk_weight": 0},
                {"resource": "quotes", "action": "create", "scope": "own", "risk_weight": 0},
                {
                    "resource": "policy",
                    "action": "read",
                    "scope": "own",
                    "risk_weight": 0,
                    "conditions": [{"field": "context.owner_id", "operator": "equals", "value_from": "user_id"}],
                },
            ],
        },
        {
            "id": "claims_viewer",
            "description": "Read-only access to team claims",
            "grants": [
                {"resource": "claim", "action": "read", "scope": "team", "risk_weight": 1},
            ],
        },
        {
            "id": "agent",
            "description": "Insurance agent with team access",
            "parent": "customer",
            "grants": [
                {"resource": "quotes", "action": "read", "scope": "team", "risk_weight": 1},
                {"resource": "customers", "action": "update", "scope": "team", "risk_weight": 1},
                {"resource": "policy", "action": "issue_policy", "scope": "team", "risk_weight": 2},
            ],
        },
        {
            "id": "underwriter",
            "description": "Underwriting authority across the organisation",
            "parent": "agent",
            "grants": [
                {"resource": "underwriting", "action": "underwrite", "scope": "org", "risk_weight": 2},
                {
                    "resource": "policy",
                    "action": "approve",
                    "scope": "org",
                    "risk_weight": 2,
                    "conditions": [{"field": "context.premium", "operator": "lte", "value": 250000}],
                },
            ],
        },
        {
            "id": "policy_admin",
            "description": "Archives policies owned by the acting user",
            "grants": [
                {
                    "resource": "policy",
                    "action": "archive",
                    "scope": "global",
                    "risk_weight": 2,
                    "conditions": [{"field": "context.owner_id", "operator": "equals", "value_from": "user_id"}],
                },
            ],
        },
        {
            "id": "admin",
            "description": "Full system access",
            "parent": "agent",
            "grants": [
                {"resource": "users", "action": "manage_permissions", "scope": "global", "risk_weight": 4},
                {"resource": "compliance", "action": "read", "scope": "global", "risk_weight": 2},
                {"resource": "audit_logs", "action": "read", "scope": "global", "risk_weight": 2},
                {"resource": "system_settings", "action": "configure", "scope": "global", "risk_weight": 3},
            ],
        },
    ],
}
