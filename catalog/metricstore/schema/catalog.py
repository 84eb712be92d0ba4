"""
Built-in catalog entity types: metric, domain and objective.

Each type declares its fields and an explicit classification table mapping
fields to the version bump a change to them causes. Fields a table does not
list classify as PATCH.

How to change safely:
    - Raising a field's severity only affects future updates
    - Keep the natural-id field and id prefix stable; ids are persisted
"""

from __future__ import annotations

from .types import (
    EntityTypeDef,
    FieldCategory,
    Severity,
    build_classification,
    field,
    resolve_category,
)

IDENTITY = FieldCategory.IDENTITY
DEFINITION = FieldCategory.DEFINITION
GOVERNANCE = FieldCategory.GOVERNANCE
PRESENTATION = FieldCategory.PRESENTATION
RELATIONSHIPS = FieldCategory.RELATIONSHIPS

STATUS_VALUES = ("active", "deprecated", "draft")

METRIC = EntityTypeDef(
    name="metric",
    id_field="metric_id",
    id_prefix="METRIC",
    description="Business metric definition",
    fields=(
        field("metric_id", "str", category=IDENTITY, required=True),
        field("name", "str", category=IDENTITY, required=True, searchable=True),
        field("short_name", "str", category=IDENTITY),
        field("description", "str", category=IDENTITY, required=True, searchable=True),
        field("category", "str", category=IDENTITY, required=True),
        field(
            "tier",
            "enum",
            category=IDENTITY,
            enum_values=("Tier-1", "Tier-2", "Tier-3"),
            default="Tier-2",
        ),
        field("business_domain", "str", category=IDENTITY),
        field(
            "metric_type",
            "enum",
            category=IDENTITY,
            enum_values=("leading", "lagging", "operational"),
            default="operational",
        ),
        field("formula", "str", category=DEFINITION, searchable=True),
        field("unit", "str", category=DEFINITION, default="count"),
        field("definition", "object", category=DEFINITION),
        field(
            "expected_direction",
            "enum",
            category=DEFINITION,
            enum_values=("increase", "decrease"),
        ),
        field("calculation_frequency", "str", category=DEFINITION),
        field("data", "object", category=DEFINITION),
        field("governance", "object", category=GOVERNANCE),
        # An owner is a governance attribute too; identity wins by precedence.
        field("owner", "str", category=resolve_category(GOVERNANCE, IDENTITY)),
        field(
            "status",
            "enum",
            category=resolve_category(GOVERNANCE, PRESENTATION),
            enum_values=STATUS_VALUES,
            default="active",
        ),
        field("tags", "list_str", category=PRESENTATION, default=[]),
        field("visualization", "object", category=PRESENTATION),
        field("dimensions", "list_obj", category=PRESENTATION),
        field("targets_and_alerts", "object", category=PRESENTATION),
        field("notes", "str", category=PRESENTATION),
        field("alignment", "object", category=RELATIONSHIPS),
        field("relationships", "object", category=RELATIONSHIPS),
        field("operational_usage", "object", category=RELATIONSHIPS),
    ),
    classification=build_classification(
        {
            Severity.MAJOR: (
                "formula",
                "unit",
                "category",
                "definition.formula",
                "definition.unit",
            ),
            Severity.MINOR: (
                "name",
                "short_name",
                "description",
                "tier",
                "business_domain",
                "metric_type",
                "definition",
                "expected_direction",
                "calculation_frequency",
            ),
            Severity.PATCH: ("tags", "governance", "owner", "status", "notes"),
        }
    ),
    owner_paths=("owner", "governance.owner_team", "governance.technical_owner"),
)

DOMAIN = EntityTypeDef(
    name="domain",
    id_field="domain_id",
    id_prefix="DOMAIN",
    description="Business domain grouping metrics",
    fields=(
        field("domain_id", "str", category=IDENTITY, required=True),
        field("name", "str", category=IDENTITY, required=True, searchable=True),
        field("description", "str", category=IDENTITY, searchable=True, default=""),
        field("owner_team", "str", category=GOVERNANCE),
        field("contact_email", "str", category=GOVERNANCE),
        field("status", "enum", category=GOVERNANCE, enum_values=STATUS_VALUES, default="active"),
        field("tier_focus", "object", category=PRESENTATION),
        field("key_areas", "list_str", category=PRESENTATION, default=[]),
        field("color", "str", category=PRESENTATION),
    ),
    classification=build_classification(
        {
            Severity.MINOR: ("name", "description"),
            Severity.PATCH: ("owner_team", "contact_email", "status", "key_areas", "color"),
        }
    ),
    owner_paths=("owner_team",),
)

OBJECTIVE = EntityTypeDef(
    name="objective",
    id_field="objective_id",
    id_prefix="OBJ",
    description="Objective with measurable key results",
    fields=(
        field("objective_id", "str", category=IDENTITY, required=True),
        field("name", "str", category=IDENTITY, required=True, searchable=True),
        field("description", "str", category=IDENTITY, searchable=True, default=""),
        field("timeframe", "object", category=DEFINITION),
        field("key_results", "list_obj", category=DEFINITION, default=[]),
        field("strategic_pillar", "str", category=RELATIONSHIPS),
        field("owner_team", "str", category=GOVERNANCE),
        field(
            "status",
            "enum",
            category=GOVERNANCE,
            enum_values=("draft", "active", "completed", "cancelled"),
            default="draft",
        ),
        field("priority", "str", category=GOVERNANCE),
        field("tags", "list_str", category=PRESENTATION, default=[]),
    ),
    classification=build_classification(
        {
            Severity.MAJOR: ("timeframe", "key_results"),
            Severity.MINOR: ("name", "description", "strategic_pillar"),
            Severity.PATCH: ("owner_team", "status", "priority", "tags"),
        }
    ),
    owner_paths=("owner_team",),
)

BUILTIN_TYPES: tuple[EntityTypeDef, ...] = (METRIC, DOMAIN, OBJECTIVE)
