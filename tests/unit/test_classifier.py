"""
Unit tests for change classification.

Tests cover:
- Deep structural equality
- Per-field severity and highest-severity-wins aggregation
- No-op detection
- Immutable natural id and metadata block
- Classification table construction and category precedence
"""

from datetime import datetime, timezone

import pytest

from catalog.metricstore.errors import UnknownFieldError, ValidationError
from catalog.metricstore.models import Entity
from catalog.metricstore.schema import (
    METRIC,
    EntityTypeDef,
    FieldCategory,
    Severity,
    build_classification,
    field,
    resolve_category,
    validate_create,
)
from catalog.metricstore.versioning import CREATION, AuditTrail, ChangeClassifier, deep_equal


@pytest.fixture
def entity(metric_payload):
    """Stored metric entity at version 1.0.0."""
    fields = validate_create(METRIC, metric_payload)
    fields["governance"] = {"owner_team": "finance", "reviewers": ["a", "b"]}
    metadata = AuditTrail().initial("alice", datetime(2024, 1, 1, tzinfo=timezone.utc))
    return Entity("metric", fields["metric_id"], fields, metadata)


@pytest.fixture
def classifier():
    return ChangeClassifier(METRIC)


class TestDeepEqual:
    """Tests for deep_equal."""

    def test_nested_structures(self):
        a = {"x": [1, {"y": "z"}], "w": None}
        b = {"w": None, "x": [1, {"y": "z"}]}
        assert deep_equal(a, b)

    def test_list_order_matters(self):
        assert not deep_equal(["a", "b"], ["b", "a"])

    def test_bool_is_not_number(self):
        assert not deep_equal(True, 1)
        assert not deep_equal(0, False)
        assert deep_equal(True, True)

    def test_int_equals_float_by_value(self):
        assert deep_equal(1, 1.0)

    def test_missing_key_differs(self):
        assert not deep_equal({"a": 1}, {"a": 1, "b": None})


class TestChangeClassifier:
    """Tests for ChangeClassifier.classify."""

    def test_creation_is_major_star(self, classifier, metric_payload):
        """Creation bypasses the table: MAJOR with fields ["*"]."""
        result = classifier.classify(None, metric_payload)
        assert result is CREATION
        assert result.severity is Severity.MAJOR
        assert result.sorted_fields() == ("*",)

    def test_minor_field(self, classifier, entity):
        result = classifier.classify(entity, {"name": "Net Revenue"})
        assert result.severity is Severity.MINOR
        assert result.changed_fields == {"name"}

    @pytest.mark.parametrize("field_name,value", [
        ("formula", "sum(x)"),
        ("unit", "EUR"),
        ("category", "operational"),
    ])
    def test_major_fields(self, classifier, entity, field_name, value):
        result = classifier.classify(entity, {field_name: value})
        assert result.severity is Severity.MAJOR

    def test_patch_field(self, classifier, entity):
        result = classifier.classify(entity, {"tags": ["finance", "kpi"]})
        assert result.severity is Severity.PATCH

    def test_unlisted_field_is_patch(self, classifier, entity):
        """Declared fields missing from the table classify as PATCH."""
        result = classifier.classify(entity, {"visualization": {"chart": "line"}})
        assert result.severity is Severity.PATCH

    def test_highest_severity_wins(self, classifier, entity):
        result = classifier.classify(
            entity, {"tags": ["x"], "name": "Renamed", "formula": "avg(x)"}
        )
        assert result.severity is Severity.MAJOR
        assert result.sorted_fields() == ("formula", "name", "tags")

    def test_identical_payload_is_noop(self, classifier, entity):
        result = classifier.classify(entity, dict(entity.fields))
        assert result.is_noop
        assert result.severity is None
        assert result.changed_fields == frozenset()

    def test_empty_payload_is_noop(self, classifier, entity):
        assert classifier.classify(entity, {}).is_noop

    def test_nested_change_detected(self, classifier, entity):
        """Changing a nested value changes the top-level field."""
        governance = {"owner_team": "finance", "reviewers": ["a", "c"]}
        result = classifier.classify(entity, {"governance": governance})
        assert result.changed_fields == {"governance"}

    @pytest.mark.parametrize("definition", [
        {"formula": "(A*B)/C", "unit": "ratio"},
        {"formula": "(A+B)/C", "unit": "percent"},
        {"unit": "ratio"},
    ])
    def test_nested_formula_or_unit_is_major(self, classifier, entity, definition):
        """definition.formula and definition.unit carry their own MAJOR entries."""
        stored = validate_create(
            METRIC, {**entity.fields, "definition": {"formula": "(A+B)/C", "unit": "ratio"}}
        )
        current = Entity("metric", entity.entity_id, stored, entity.metadata)
        result = classifier.classify(current, {"definition": definition})
        assert result.severity is Severity.MAJOR
        assert result.changed_fields == {"definition"}

    def test_other_definition_keys_are_minor(self, classifier, entity):
        stored = dict(entity.fields, definition={"formula": "(A+B)/C", "unit": "ratio"})
        current = Entity("metric", entity.entity_id, stored, entity.metadata)
        result = classifier.classify(
            current,
            {"definition": {"formula": "(A+B)/C", "unit": "ratio", "formula_detail": "x"}},
        )
        assert result.severity is Severity.MINOR

    def test_clearing_absent_field_is_noop(self, classifier, entity):
        """None for a field that is not stored compares equal."""
        assert classifier.classify(entity, {"notes": None}).is_noop

    def test_clearing_present_field_changes(self, classifier, entity):
        result = classifier.classify(entity, {"formula": None})
        assert result.severity is Severity.MAJOR

    def test_unknown_field_rejected(self, classifier, entity):
        with pytest.raises(UnknownFieldError, match="Did you mean"):
            classifier.classify(entity, {"formla": "x"})

    def test_wrong_type_rejected(self, classifier, entity):
        with pytest.raises(ValidationError):
            classifier.classify(entity, {"tags": "finance"})

    def test_natural_id_is_immutable(self, classifier, entity):
        with pytest.raises(ValidationError, match="natural id"):
            classifier.classify(entity, {"metric_id": "METRIC-other"})

    def test_same_natural_id_is_allowed(self, classifier, entity):
        assert classifier.classify(entity, {"metric_id": entity.entity_id}).is_noop

    def test_metadata_round_trip_is_noop(self, classifier, entity):
        """A get -> update round trip carrying metadata changes nothing."""
        document = entity.to_document()
        assert classifier.classify(entity, document).is_noop

    def test_metadata_change_rejected(self, classifier, entity):
        document = entity.to_document()
        document["metadata"]["version"] = "9.9.9"
        with pytest.raises(ValidationError, match="managed by the store"):
            classifier.classify(entity, document)


class TestClassificationTable:
    """Tests for classification tables and category precedence."""

    def test_field_in_two_groups_keeps_higher(self):
        table = build_classification({
            Severity.PATCH: ("a", "b"),
            Severity.MAJOR: ("b",),
        })
        assert table == {"a": Severity.PATCH, "b": Severity.MAJOR}

    def test_severity_highest(self):
        assert Severity.highest([Severity.PATCH, Severity.MAJOR, Severity.MINOR]) is Severity.MAJOR
        assert Severity.highest([]) is None

    def test_category_precedence(self):
        """definition > identity > governance > presentation > relationships."""
        assert resolve_category(FieldCategory.GOVERNANCE, FieldCategory.IDENTITY) is (
            FieldCategory.IDENTITY
        )
        assert resolve_category(FieldCategory.RELATIONSHIPS, FieldCategory.DEFINITION) is (
            FieldCategory.DEFINITION
        )
        assert resolve_category(FieldCategory.PRESENTATION) is FieldCategory.PRESENTATION

    def test_metric_table(self):
        assert METRIC.severity_of("formula") is Severity.MAJOR
        assert METRIC.severity_of("description") is Severity.MINOR
        assert METRIC.severity_of("status") is Severity.PATCH
        assert METRIC.severity_of("definition") is Severity.MINOR
        assert METRIC.nested_classification("definition") == {
            "definition.formula": Severity.MAJOR,
            "definition.unit": Severity.MAJOR,
        }

    def test_dotted_entry_needs_declared_root(self):
        with pytest.raises(ValueError, match="unknown fields"):
            EntityTypeDef(
                name="widget",
                id_field="widget_id",
                id_prefix="WIDGET",
                fields=(field("widget_id", "str", required=True),),
                classification={"body.size": Severity.MAJOR},
            )
