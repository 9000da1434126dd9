"""Unit tests for conditional mapping rules."""

from types import SimpleNamespace

import pytest

from enterprise_migration.datastore.base import CONDITIONAL_RULES
from enterprise_migration.models.mapping import (
    ActionType,
    ConditionalMappingRule,
    FieldMapping,
    RuleCondition,
)
from enterprise_migration.services import conditional_router as router_module
from enterprise_migration.services.conditional_router import (
    ConditionalRouter,
    RuleCache,
    condition_matches,
)

MAPPING = FieldMapping("license_type", "hc_staff_license", "license_type")


def rule(rule_id, condition, action, config=None, priority=100, column="license_type"):
    return ConditionalMappingRule(
        rule_id=rule_id,
        source_column=column,
        condition=condition,
        action_type=action,
        action_config=config or {},
        priority=priority,
    )


@pytest.fixture
def router(datastore):
    return ConditionalRouter(datastore)


class TestConditions:
    """Test each condition type against a record."""

    @pytest.mark.parametrize("condition,record,expected", [
        (RuleCondition(type="value_equals", value="RN"), {"license_type": "RN"}, True),
        (RuleCondition(type="value_equals", value=5), {"license_type": "5"}, True),
        (RuleCondition(type="value_in", values=["RN", "LPN"]), {"license_type": "LPN"}, True),
        (RuleCondition(type="value_in", values=["RN"]), {"license_type": "MD"}, False),
        (RuleCondition(type="value_matches", pattern=r"^R"), {"license_type": "RN"}, True),
        (RuleCondition(type="value_not_matches", pattern=r"^R"), {"license_type": "MD"}, True),
        (RuleCondition(type="value_not_matches", pattern=r"^R"), {"license_type": None}, True),
        (RuleCondition(type="value_range", min=18, max=65), {"license_type": "40"}, True),
        (RuleCondition(type="value_range", min=18), {"license_type": "abc"}, False),
        (RuleCondition(type="value_null"), {"license_type": "  "}, True),
        (RuleCondition(type="value_null"), {}, True),
        (RuleCondition(type="value_not_null"), {"license_type": "RN"}, True),
        (RuleCondition(type="value_equals", field="state", value="TX"), {"state": "TX"}, True),
        (RuleCondition(type="no_such_condition"), {"license_type": "RN"}, False),
        (RuleCondition(type="value_matches", pattern="(["), {"license_type": "RN"}, False),
        (RuleCondition(type="value_not_matches", pattern="(["), {"license_type": "RN"}, False),
    ])
    def test_condition_matches(self, condition, record, expected):
        assert condition_matches(condition, "license_type", record) is expected


class TestRouting:
    """Test actions applied by matched rules."""

    def test_no_rules_passes_mapping_through(self, router):
        routed = router.apply(MAPPING, {"license_type": "RN"})
        assert routed.mappings == [MAPPING]
        assert routed.decision.matched is False

    def test_skip(self, router):
        router.add_rule(rule("r1", RuleCondition(type="value_null"), ActionType.SKIP))

        assert router.apply(MAPPING, {"license_type": None}).skipped
        assert not router.apply(MAPPING, {"license_type": "RN"}).skipped

    def test_map_to_table_and_column(self, router):
        router.add_rule(rule(
            "r1", RuleCondition(type="value_equals", value="DEA"), ActionType.MAP_TO_TABLE,
            {"target_table": "hc_staff_credential", "target_column": "credential_type"},
        ))

        [routed] = router.apply(MAPPING, {"license_type": "DEA"}).mappings
        assert routed.target_table == "hc_staff_credential"
        assert routed.target_column == "credential_type"

    def test_transform(self, router):
        router.add_rule(rule("r1", RuleCondition(type="value_not_null"), ActionType.TRANSFORM,
                             {"transform": "UPPERCASE"}))

        [routed] = router.apply(MAPPING, {"license_type": "rn"}).mappings
        assert routed.transform == "UPPERCASE"
        assert routed.target_table == MAPPING.target_table

    def test_split_keeps_original(self, router):
        router.add_rule(rule("r1", RuleCondition(type="value_not_null"), ActionType.SPLIT, {
            "targets": [{"target_table": "hc_staff", "target_column": "primary_license_type"}],
        }))

        mappings = router.apply(MAPPING, {"license_type": "RN"}).mappings
        assert [(m.target_table, m.target_column) for m in mappings] == [
            ("hc_staff_license", "license_type"),
            ("hc_staff", "primary_license_type"),
        ]

    def test_flag_review(self, router):
        router.add_rule(rule("r1", RuleCondition(type="value_equals", value="MD"), ActionType.FLAG_REVIEW,
                             {"flag_reason": "Physician license", "flag_type": "warning"}))

        routed = router.apply(MAPPING, {"license_type": "MD"})
        assert routed.mappings == [MAPPING]
        assert routed.review_flag == {
            "source_column": "license_type",
            "rule_id": "r1",
            "reason": "Physician license",
            "flag_type": "warning",
        }

    def test_lowest_priority_value_wins(self, router):
        router.add_rule(rule("late", RuleCondition(type="value_not_null"), ActionType.SKIP, priority=50))
        router.add_rule(rule("early", RuleCondition(type="value_not_null"), ActionType.TRANSFORM,
                             {"transform": "LOWERCASE"}, priority=10))

        decision = router.evaluate("license_type", {"license_type": "RN"})
        assert decision.rule_id == "early"

    def test_inactive_rules_ignored(self, router, datastore):
        inactive = rule("r1", RuleCondition(type="value_not_null"), ActionType.SKIP)
        inactive.is_active = False
        router.add_rule(inactive)

        assert not router.apply(MAPPING, {"license_type": "RN"}).skipped

    def test_invalid_pattern_falls_through_to_next_rule(self, router):
        router.add_rule(rule("broken", RuleCondition(type="value_matches", pattern="(["), ActionType.SKIP, priority=10))
        router.add_rule(rule("ok", RuleCondition(type="value_matches", pattern=r"^R"), ActionType.TRANSFORM,
                             {"transform": "LOWERCASE"}, priority=20))

        routed = router.apply(MAPPING, {"license_type": "RN"})
        assert routed.decision.rule_id == "ok"
        assert not routed.skipped


class TestRuleCache:
    """Test rule caching and invalidation."""

    def test_cached_until_invalidated(self, router, datastore):
        assert router.load_rules("license_type") == []

        datastore.insert(CONDITIONAL_RULES, [
            rule("r1", RuleCondition(type="value_null"), ActionType.SKIP).to_dict()
        ])
        assert router.load_rules("license_type") == []

        router.cache.invalidate("license_type")
        assert [r.rule_id for r in router.load_rules("license_type")] == ["r1"]

    def test_ttl_expiry(self, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr(router_module, "time", SimpleNamespace(monotonic=lambda: now[0]))
        cache = RuleCache(ttl_seconds=60)
        cache.put("npi", [])

        now[0] += 59
        assert cache.get("npi") == []
        now[0] += 2
        assert cache.get("npi") is None

    def test_invalidate_all(self):
        cache = RuleCache()
        cache.put("a", [])
        cache.put("b", [])
        cache.invalidate()
        assert cache.get("a") is None
        assert cache.get("b") is None
