from __future__ import annotations

import logging
import re
import statistics as stats_lib
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

from invoice_engine.golden_patterns import EXPECTED_GOLDEN_PATTERNS, GOLDEN_CREATED_BY, golden_drafts
from invoice_engine.pattern_store import DuplicatePatternError, PatternStore, RegistryUnavailableError
from invoice_engine.retry_utils import RetryPolicy, run_with_retry
from invoice_engine.usage_log import UsageEventLog
from schemas.extraction_schema import (
    CategoryStatistics,
    ExtractionRule,
    HealthIssue,
    PatternCategory,
    PatternStatistics,
    PatternTestResult,
    RecommendedAction,
    RuleDraft,
)

logger = logging.getLogger(__name__)

__all__ = [
    "CompiledRule",
    "DuplicatePatternError",
    "InvalidPatternError",
    "PatternInUseError",
    "PatternNotFoundError",
    "PatternRegistry",
    "RegistrySnapshot",
    "RegistryUnavailableError",
    "build_snapshot",
    "compile_pattern",
    "has_nested_quantifier",
    "parse_flags",
]


class InvalidPatternError(ValueError):
    def __init__(self, message: str, code: str = "invalid_pattern") -> None:
        super().__init__(message)
        self.code = code


class PatternNotFoundError(LookupError):
    def __init__(self, message: str, code: str = "pattern_not_found") -> None:
        super().__init__(message)
        self.code = code


class PatternInUseError(RuntimeError):
    def __init__(self, message: str, code: str = "pattern_in_use") -> None:
        super().__init__(message)
        self.code = code


_FLAG_NAMES: dict[str, int] = {
    "IGNORECASE": re.IGNORECASE,
    "CASE_INSENSITIVE": re.IGNORECASE,
    "I": re.IGNORECASE,
    "MULTILINE": re.MULTILINE,
    "M": re.MULTILINE,
    "DOTALL": re.DOTALL,
    "S": re.DOTALL,
    "VERBOSE": re.VERBOSE,
    "COMMENTS": re.VERBOSE,
    "X": re.VERBOSE,
    "UNICODE_CASE": 0,
    "UNICODE": 0,
    "NONE": 0,
}

_UNBOUNDED_BRACE = re.compile(r"\{\d*,\}")


def parse_flags(flags: str | None) -> int:
    """Translate a comma separated flag list; ``None`` means IGNORECASE."""
    if flags is None:
        return re.IGNORECASE
    value = 0
    for raw in flags.replace("|", ",").split(","):
        name = raw.strip().upper()
        if not name:
            continue
        if name not in _FLAG_NAMES:
            raise InvalidPatternError(f"Unknown regex flag: {raw.strip()}", code="invalid_flags")
        value |= _FLAG_NAMES[name]
    return value


def _unbounded_quantifier_at(regex: str, pos: int) -> bool:
    if pos >= len(regex):
        return False
    if regex[pos] in "+*":
        return True
    return _UNBOUNDED_BRACE.match(regex, pos) is not None


def has_nested_quantifier(regex: str) -> bool:
    """Detect a repeated group whose body also repeats without bound, e.g. ``(a+)+``."""
    stack: list[bool] = []
    in_class = False
    i = 0
    while i < len(regex):
        ch = regex[i]
        if ch == "\\":
            i += 2
            continue
        if in_class:
            if ch == "]":
                in_class = False
            i += 1
            continue
        if ch == "[":
            in_class = True
            i += 1
            if i < len(regex) and regex[i] == "^":
                i += 1
            if i < len(regex) and regex[i] == "]":
                i += 1
            continue
        if ch == "(":
            stack.append(False)
        elif ch == ")":
            inner = stack.pop() if stack else False
            repeated = _unbounded_quantifier_at(regex, i + 1)
            if inner and repeated:
                return True
            if stack and (inner or repeated):
                stack[-1] = True
        elif stack and _unbounded_quantifier_at(regex, i):
            stack[-1] = True
        i += 1
    return False


def compile_pattern(regex: str, flags: str | None = None, *, max_length: int = 500) -> re.Pattern[str]:
    if not regex or not regex.strip():
        raise InvalidPatternError("Pattern regex is required")
    if len(regex) > max_length:
        raise InvalidPatternError(
            f"Pattern is {len(regex)} characters long; the limit is {max_length}",
            code="pattern_too_long",
        )
    compiled_flags = parse_flags(flags)
    try:
        compiled = re.compile(regex, compiled_flags)
    except re.error as exc:
        raise InvalidPatternError(f"Invalid regular expression: {exc}") from exc
    if has_nested_quantifier(regex):
        raise InvalidPatternError(
            "Pattern nests unbounded quantifiers and may backtrack catastrophically",
            code="unsafe_pattern",
        )
    return compiled


@dataclass(frozen=True)
class CompiledRule:
    rule: ExtractionRule
    pattern: re.Pattern[str]
    validator: re.Pattern[str] | None = None


@dataclass(frozen=True)
class RegistrySnapshot:
    version: int
    rules: tuple[ExtractionRule, ...]
    by_category: Mapping[PatternCategory, tuple[CompiledRule, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def rules_for(self, category: PatternCategory) -> tuple[CompiledRule, ...]:
        return self.by_category.get(category, ())

    def get(self, rule_id: int) -> ExtractionRule | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None


def build_snapshot(rules: list[ExtractionRule], version: int) -> RegistrySnapshot:
    grouped: dict[PatternCategory, list[CompiledRule]] = defaultdict(list)
    for rule in rules:
        if not rule.is_active:
            continue
        try:
            pattern = re.compile(rule.regex, parse_flags(rule.flags))
        except (re.error, InvalidPatternError) as exc:
            logger.error("Skipping rule %s with uncompilable pattern: %s", rule.name, exc)
            continue
        validator = None
        if rule.validation_regex:
            try:
                validator = re.compile(rule.validation_regex)
            except re.error as exc:
                logger.warning("Ignoring invalid validation regex on rule %s: %s", rule.name, exc)
        grouped[rule.category].append(CompiledRule(rule=rule, pattern=pattern, validator=validator))
    by_category = {
        category: tuple(sorted(items, key=lambda c: (c.rule.priority, c.rule.id)))
        for category, items in grouped.items()
    }
    ordered = tuple(sorted(rules, key=lambda r: (r.category.value, r.priority, r.id)))
    return RegistrySnapshot(version=version, rules=ordered, by_category=MappingProxyType(by_category))


class PatternRegistry:
    """Read-mostly rule registry backed by a ``PatternStore``.

    Readers take the current ``RegistrySnapshot`` without locking. Every
    mutation writes through the store, rebuilds a snapshot from it and
    publishes the new one with a single assignment, so a running extraction
    keeps the rule set it started with.
    """

    def __init__(
        self,
        store: PatternStore,
        usage_log: UsageEventLog | None = None,
        *,
        max_pattern_length: int = 500,
        retry_policy: RetryPolicy | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._usage_log = usage_log
        self._max_pattern_length = max_pattern_length
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep_fn = sleep_fn
        self._lock = threading.Lock()
        self._snapshot: RegistrySnapshot | None = None
        self._version = 0

    def _publish(self) -> RegistrySnapshot:
        rules = run_with_retry(
            self._store.load_rules,
            should_retry=lambda exc: isinstance(exc, RegistryUnavailableError),
            policy=self._retry_policy,
            sleep_fn=self._sleep_fn,
        )
        self._version += 1
        snapshot = build_snapshot(rules, self._version)
        self._snapshot = snapshot
        logger.info("Published pattern snapshot v%d with %d rules", snapshot.version, len(snapshot.rules))
        return snapshot

    def snapshot(self) -> RegistrySnapshot:
        current = self._snapshot
        if current is not None:
            return current
        with self._lock:
            if self._snapshot is None:
                return self._publish()
            return self._snapshot

    def reload(self) -> RegistrySnapshot:
        with self._lock:
            return self._publish()

    def seed_if_empty(self) -> int:
        with self._lock:
            if self._store.count_rules() > 0:
                return 0
            drafts = golden_drafts()
            for draft in drafts:
                self._validate_draft(draft)
            self._store.insert_rules(drafts)
            self._publish()
        logger.info("Seeded %d golden patterns", len(drafts))
        return len(drafts)

    def rules_for(self, category: PatternCategory) -> list[ExtractionRule]:
        return [compiled.rule for compiled in self.snapshot().rules_for(category)]

    def list_rules(
        self,
        *,
        category: PatternCategory | None = None,
        active_only: bool = False,
    ) -> list[ExtractionRule]:
        rules = self.snapshot().rules
        return [
            rule
            for rule in rules
            if (category is None or rule.category == category) and (not active_only or rule.is_active)
        ]

    def get(self, rule_id: int) -> ExtractionRule:
        rule = self.snapshot().get(rule_id)
        if rule is None:
            raise PatternNotFoundError(f"Pattern not found: {rule_id}")
        return rule

    def categories(self) -> list[str]:
        return [category.value for category in PatternCategory]

    def _validate_draft(self, draft: RuleDraft) -> None:
        compiled = compile_pattern(draft.regex, draft.flags, max_length=self._max_pattern_length)
        if draft.capture_group > compiled.groups:
            raise InvalidPatternError(
                f"Capture group {draft.capture_group} exceeds the {compiled.groups} group(s) in the pattern",
                code="invalid_capture_group",
            )
        if draft.validation_regex:
            try:
                re.compile(draft.validation_regex)
            except re.error as exc:
                raise InvalidPatternError(f"Invalid validation regex: {exc}") from exc

    def create(self, draft: RuleDraft) -> ExtractionRule:
        self._validate_draft(draft)
        with self._lock:
            if self._store.name_exists(draft.name):
                raise DuplicatePatternError(f"Pattern name already exists: {draft.name}")
            rule = self._store.insert_rule(draft)
            self._publish()
        logger.info("Created pattern %s (id=%d, category=%s)", rule.name, rule.id, rule.category.value)
        return rule

    def update(self, rule_id: int, draft: RuleDraft) -> ExtractionRule:
        self._validate_draft(draft)
        with self._lock:
            if self._store.name_exists(draft.name, exclude_id=rule_id):
                raise DuplicatePatternError(f"Pattern name already exists: {draft.name}")
            rule = self._store.update_rule(rule_id, draft)
            if rule is None:
                raise PatternNotFoundError(f"Pattern not found: {rule_id}")
            self._publish()
        logger.info("Updated pattern %s (id=%d)", rule.name, rule.id)
        return rule

    def toggle_active(self, rule_id: int, is_active: bool) -> ExtractionRule:
        with self._lock:
            rule = self._store.set_active(rule_id, is_active)
            if rule is None:
                raise PatternNotFoundError(f"Pattern not found: {rule_id}")
            self._publish()
        logger.info("Pattern %s is now %s", rule.name, "active" if rule.is_active else "inactive")
        return rule

    def delete(self, rule_id: int) -> None:
        with self._lock:
            rule = self._store.get_rule(rule_id)
            if rule is None:
                raise PatternNotFoundError(f"Pattern not found: {rule_id}")
            if self._usage_log is not None and self._usage_log.has_usage(rule_id):
                raise PatternInUseError(
                    f"Pattern {rule.name} has usage history and cannot be deleted. "
                    "Consider deactivating instead."
                )
            self._store.delete_rule(rule_id)
            self._publish()
        logger.info("Deleted pattern %s (id=%d)", rule.name, rule_id)

    def test(self, regex: str, flags: str | None, sample_text: str) -> PatternTestResult:
        try:
            compiled = compile_pattern(regex, flags, max_length=self._max_pattern_length)
        except InvalidPatternError as exc:
            return PatternTestResult(is_valid=False, error_message=str(exc))
        match = compiled.search(sample_text)
        if match is None:
            return PatternTestResult(is_valid=True, matches=False)
        groups = list(match.groups())
        captured = groups[0] if groups else match.group(0)
        return PatternTestResult(
            is_valid=True,
            matches=True,
            matched_text=match.group(0),
            captured_value=captured,
            capture_groups=groups,
            start=match.start(),
            end=match.end(),
        )

    def statistics(self) -> PatternStatistics:
        snapshot = self.snapshot()
        rules = snapshot.rules
        active = [r for r in rules if r.is_active]
        inactive = [r for r in rules if not r.is_active]
        golden = [r for r in rules if r.created_by == GOLDEN_CREATED_BY]

        golden_categories = {r.category for r in golden}
        missing = [c.value for c in PatternCategory if c not in golden_categories]
        complete = len(golden) >= EXPECTED_GOLDEN_PATTERNS and not missing
        if complete:
            golden_status = "COMPLETE"
        elif len(golden) < EXPECTED_GOLDEN_PATTERNS // 2:
            golden_status = "INCOMPLETE"
        else:
            golden_status = "NEEDS_REVIEW"

        breakdown: list[CategoryStatistics] = []
        for category in PatternCategory:
            in_category = [r for r in rules if r.category == category]
            if not in_category:
                breakdown.append(CategoryStatistics(category=category, total=0, active=0, golden=0))
                continue
            active_in = sorted((r for r in in_category if r.is_active), key=lambda r: (r.priority, r.id))
            breakdown.append(
                CategoryStatistics(
                    category=category,
                    total=len(in_category),
                    active=len(active_in),
                    golden=sum(1 for r in in_category if r.created_by == GOLDEN_CREATED_BY),
                    average_priority=round(stats_lib.fmean(r.priority for r in in_category), 2),
                    average_confidence_weight=round(
                        stats_lib.fmean(r.confidence_weight for r in in_category), 3
                    ),
                    top_pattern=active_in[0].name if active_in else None,
                )
            )

        issues: list[HealthIssue] = []
        if inactive:
            issues.append(
                HealthIssue(
                    issue="Inactive Patterns",
                    severity="MEDIUM",
                    description="Some patterns are inactive and are not used for extraction",
                    affected_patterns=len(inactive),
                    pattern_names=[r.name for r in inactive[:5]],
                )
            )
        weak = [r for r in rules if r.confidence_weight < 0.5]
        if weak:
            issues.append(
                HealthIssue(
                    issue="Low Confidence Patterns",
                    severity="HIGH",
                    description="Patterns with confidence weight below 0.5 may produce unreliable results",
                    affected_patterns=len(weak),
                    pattern_names=[r.name for r in weak[:5]],
                )
            )

        actions: list[RecommendedAction] = []
        if not complete:
            actions.append(
                RecommendedAction(
                    action="Restore Golden Data",
                    priority="HIGH",
                    description="Some golden patterns are missing. Re-run seeding on an empty store.",
                    details={
                        "missing_patterns": max(EXPECTED_GOLDEN_PATTERNS - len(golden), 0),
                        "missing_categories": missing,
                    },
                )
            )
        if rules and len(active) < len(rules) * 0.8:
            actions.append(
                RecommendedAction(
                    action="Review Inactive Patterns",
                    priority="MEDIUM",
                    description="Many patterns are inactive. Review and activate useful patterns.",
                    details={"inactive_count": len(inactive)},
                )
            )

        return PatternStatistics(
            total_patterns=len(rules),
            active_patterns=len(active),
            inactive_patterns=len(inactive),
            golden_patterns=len(golden),
            expected_golden_patterns=EXPECTED_GOLDEN_PATTERNS,
            golden_patterns_complete=complete,
            golden_status=golden_status,
            missing_categories=missing,
            categories=breakdown,
            health_issues=issues,
            recommendations=actions,
            snapshot_version=snapshot.version,
        )
