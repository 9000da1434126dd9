"""Per-column conditional mapping rules."""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..datastore.base import Datastore, eq, CONDITIONAL_RULES
from ..models.mapping import (
    ActionType,
    ConditionalMappingRule,
    ConditionType,
    FieldMapping,
    RoutingDecision,
    RuleCondition,
)

logger = logging.getLogger(__name__)


class RuleCache:
    """
    Process-local cache of rules per source column.

    Entries live until ``invalidate`` is called or, when ``ttl_seconds`` is
    set, until they are older than the TTL.
    """

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[float, List[ConditionalMappingRule]]] = {}
        self._lock = threading.Lock()

    def get(self, column: str) -> Optional[List[ConditionalMappingRule]]:
        with self._lock:
            entry = self._entries.get(column)
            if entry is None:
                return None
            loaded_at, rules = entry
            if self.ttl_seconds is not None and time.monotonic() - loaded_at > self.ttl_seconds:
                del self._entries[column]
                return None
            return rules

    def put(self, column: str, rules: List[ConditionalMappingRule]) -> None:
        with self._lock:
            self._entries[column] = (time.monotonic(), rules)

    def invalidate(self, column: Optional[str] = None) -> None:
        """Drop one column's rules, or all of them."""
        with self._lock:
            if column is None:
                self._entries.clear()
            else:
                self._entries.pop(column, None)


def _to_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def condition_matches(condition: RuleCondition, source_column: str, record: Mapping[str, Any]) -> bool:
    """Whether ``record`` satisfies ``condition``. Unknown condition types never match."""
    column = condition.field or source_column
    value = record.get(column)
    is_null = value is None or (isinstance(value, str) and value.strip() == "")

    try:
        kind = ConditionType(condition.type)
    except ValueError:
        logger.warning(f"Unknown condition type {condition.type!r} on column {source_column}")
        return False

    if kind == ConditionType.VALUE_NULL:
        return is_null
    if kind == ConditionType.VALUE_NOT_NULL:
        return not is_null
    if kind == ConditionType.VALUE_EQUALS:
        return value == condition.value or (value is not None and str(value) == str(condition.value))
    if kind == ConditionType.VALUE_IN:
        return value in condition.values or str(value) in {str(v) for v in condition.values}
    if kind in (ConditionType.VALUE_MATCHES, ConditionType.VALUE_NOT_MATCHES):
        if not condition.pattern:
            return False
        try:
            matched = not is_null and re.search(condition.pattern, str(value)) is not None
        except re.error as e:
            logger.warning(f"Invalid pattern {condition.pattern!r} on column {source_column}: {e}")
            return False
        return matched if kind == ConditionType.VALUE_MATCHES else not matched
    if kind == ConditionType.VALUE_RANGE:
        number = _to_number(value)
        if number is None:
            return False
        if condition.min is not None and number < float(condition.min):
            return False
        if condition.max is not None and number > float(condition.max):
            return False
        return True
    return False


@dataclass
class RoutedMapping:
    """Mappings to apply for one record after routing, plus any review flag."""
    mappings: List[FieldMapping] = field(default_factory=list)
    decision: RoutingDecision = field(default_factory=RoutingDecision)
    review_flag: Optional[Dict[str, Any]] = None

    @property
    def skipped(self) -> bool:
        return not self.mappings


class ConditionalRouter:
    """Evaluates conditional rules to override or suppress a mapping per record."""

    def __init__(self, datastore: Datastore, cache: Optional[RuleCache] = None):
        self.datastore = datastore
        self.cache = cache if cache is not None else RuleCache()

    def load_rules(self, source_column: str) -> List[ConditionalMappingRule]:
        """Active rules for a column, lowest priority value first."""
        cached = self.cache.get(source_column)
        if cached is not None:
            return cached

        rows = self.datastore.select(
            CONDITIONAL_RULES,
            [eq("source_column", source_column), eq("is_active", True)],
            order_by=["priority"],
        )
        rules = [ConditionalMappingRule.from_dict(r) for r in rows]
        self.cache.put(source_column, rules)
        return rules

    def add_rule(self, rule: ConditionalMappingRule) -> None:
        """Persist a rule and drop the column's cached rules."""
        self.datastore.insert(CONDITIONAL_RULES, [rule.to_dict()])
        self.cache.invalidate(rule.source_column)

    def evaluate(self, source_column: str, record: Mapping[str, Any]) -> RoutingDecision:
        """First matching rule wins."""
        for rule in self.load_rules(source_column):
            if condition_matches(rule.condition, source_column, record):
                return RoutingDecision(
                    matched=True,
                    action_type=rule.action_type,
                    action_config=dict(rule.action_config),
                    rule_id=rule.rule_id,
                )
        return RoutingDecision(matched=False)

    def apply(self, mapping: FieldMapping, record: Mapping[str, Any]) -> RoutedMapping:
        """
        Route one mapping for one record.

        Args:
            mapping: The suggested mapping
            record: The source row being migrated

        Returns:
            RoutedMapping whose ``mappings`` is empty when the field is skipped
        """
        decision = self.evaluate(mapping.source_column, record)
        if not decision.matched:
            return RoutedMapping(mappings=[mapping], decision=decision)

        config = decision.action_config
        action = decision.action_type

        if action == ActionType.SKIP:
            return RoutedMapping(mappings=[], decision=decision)
        if action in (ActionType.MAP_TO_TABLE, ActionType.MAP_TO_COLUMN):
            routed = mapping.with_target(
                target_table=config.get("target_table"),
                target_column=config.get("target_column"),
            )
            return RoutedMapping(mappings=[routed], decision=decision)
        if action == ActionType.TRANSFORM:
            routed = mapping.with_target(transform=config.get("transform"))
            return RoutedMapping(mappings=[routed], decision=decision)
        if action == ActionType.FLAG_REVIEW:
            flag = {
                "source_column": mapping.source_column,
                "rule_id": decision.rule_id,
                "reason": config.get("flag_reason", "Flagged for review"),
                "flag_type": config.get("flag_type", "info"),
            }
            return RoutedMapping(mappings=[mapping], decision=decision, review_flag=flag)
        if action == ActionType.SPLIT:
            extra = [
                mapping.with_target(
                    target_table=t.get("target_table"),
                    target_column=t.get("target_column"),
                    transform=t.get("transform"),
                )
                for t in config.get("targets", [])
            ]
            return RoutedMapping(mappings=[mapping] + extra, decision=decision)

        return RoutedMapping(mappings=[mapping], decision=decision)
