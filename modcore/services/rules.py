"""Condition/action rule evaluation.

Rules run strictly in descending priority order. A rule triggers when the
weighted share of its matching conditions reaches rule_trigger_threshold
(0.5 by default); a triggered rule executes its actions in declared order
and leaves a trigger audit row plus a stats increment behind.

Design notes:
- Evaluation is sequential across rules because a triggered high-priority
  block rule (priority >= rule_short_circuit_priority) stops the pass.
- A malformed condition raises RuleEvaluationError; that rule is reported
  as an error result and the pass continues with the next rule.
- execute=False is a dry run: confidence and action labels are reported but
  no side effect, audit row or stats update happens.
"""

import time

import structlog

from modcore.config import Settings, settings
from modcore.errors import ModerationError, RuleEvaluationError, StoreUnavailable
from modcore.metrics import rule_errors_total, rule_triggers_total
from modcore.models.base import utcnow
from modcore.schemas.rule import ModerationRule, RuleExecutionResult, RuleOutcome
from modcore.services.actions import ActionExecutor, action_label
from modcore.services.rule_fields import RuleContext, condition_matches
from modcore.store import ModerationStore

log = structlog.get_logger()


def rule_confidence(rule: ModerationRule, ctx: RuleContext) -> tuple[float, list[str]]:
    """Weighted share of matching conditions and their descriptions.

    Raises:
        RuleEvaluationError: If any condition cannot be evaluated.
    """
    total_weight = sum(c.weight for c in rule.conditions)
    matched = [c for c in rule.conditions if condition_matches(rule.id, c, ctx)]
    matched_weight = sum(c.weight for c in matched)
    confidence = matched_weight / total_weight if total_weight > 0 else 0.0
    return min(1.0, confidence), [c.describe() for c in matched]


def summarize(results: list[RuleExecutionResult]) -> RuleOutcome:
    """Collapse per-rule results into block/flag/review flags and labels."""
    outcome = RuleOutcome()
    for result in results:
        if not result.triggered:
            continue
        outcome.reasons.append(result.reason)
        for label in result.actions_executed:
            outcome.actions.append(label)
            kind = label.split(":", 1)[0]
            if kind == "block":
                outcome.should_block = True
            elif kind in ("review", "escalate"):
                outcome.should_review = True
            elif kind == "flag":
                outcome.should_flag = True
    return outcome


class RuleEngine:
    def __init__(
        self,
        store: ModerationStore,
        executor: ActionExecutor,
        app_settings: Settings = settings,
    ) -> None:
        self._store = store
        self._executor = executor
        self._settings = app_settings

    async def evaluate(
        self, rules: list[ModerationRule], ctx: RuleContext, execute: bool = True
    ) -> list[RuleExecutionResult]:
        ordered = sorted(
            (r for r in rules if r.is_active and r.applies_to(ctx.content.type)),
            key=lambda r: r.priority,
            reverse=True,
        )
        results: list[RuleExecutionResult] = []
        for rule in ordered:
            result = await self._evaluate_rule(rule, ctx, execute)
            results.append(result)
            if (
                result.triggered
                and rule.blocks
                and rule.priority >= self._settings.rule_short_circuit_priority
            ):
                log.info("rule_short_circuit", rule_id=rule.id, content_id=ctx.content.id)
                break
        return results

    async def _evaluate_rule(
        self, rule: ModerationRule, ctx: RuleContext, execute: bool
    ) -> RuleExecutionResult:
        started = time.perf_counter()
        try:
            confidence, matched = rule_confidence(rule, ctx)
        except RuleEvaluationError as exc:
            rule_errors_total.labels(rule_id=rule.id).inc()
            log.warning("rule_evaluation_failed", rule_id=rule.id, error=str(exc))
            return RuleExecutionResult(
                rule_id=rule.id,
                triggered=False,
                confidence=0.0,
                processing_time_ms=(time.perf_counter() - started) * 1000,
                reason=f"Error executing rule: {exc}",
                error=True,
            )

        triggered = confidence >= self._settings.rule_trigger_threshold
        executed: list[str] = []
        if triggered:
            executed = await self._run_actions(rule, ctx, execute)
            if execute:
                rule_triggers_total.labels(rule_id=rule.id).inc()
                await self._audit(rule, ctx, confidence, matched, executed)

        if triggered:
            reason = f'Rule "{rule.name}" triggered with {round(confidence * 100)}% confidence'
        else:
            reason = f'Rule "{rule.name}" conditions not met'
        return RuleExecutionResult(
            rule_id=rule.id,
            triggered=triggered,
            confidence=confidence,
            matched_conditions=matched,
            actions_executed=executed,
            processing_time_ms=(time.perf_counter() - started) * 1000,
            reason=reason,
        )

    async def _run_actions(
        self, rule: ModerationRule, ctx: RuleContext, execute: bool
    ) -> list[str]:
        executed: list[str] = []
        for action in rule.actions:
            if not execute:
                executed.append(action_label(action))
                continue
            try:
                applied = await self._executor.execute_rule_action(action, rule, ctx)
            except ModerationError as exc:
                log.error(
                    "rule_action_failed",
                    rule_id=rule.id,
                    action=action.type.value,
                    error=str(exc),
                )
                continue
            if applied:
                executed.append(action_label(action))
        return executed

    async def _audit(
        self,
        rule: ModerationRule,
        ctx: RuleContext,
        confidence: float,
        matched: list[str],
        executed: list[str],
    ) -> None:
        try:
            await self._store.record_rule_trigger(
                rule.id,
                ctx.content.id,
                ctx.content.author_id,
                confidence,
                matched,
                executed,
            )
            await self._store.increment_rule_stats(rule.id, utcnow())
        except StoreUnavailable:
            log.warning("rule_trigger_audit_failed", rule_id=rule.id, content_id=ctx.content.id)

    async def test_rules(
        self, rules: list[ModerationRule], ctx: RuleContext
    ) -> tuple[list[RuleExecutionResult], RuleOutcome]:
        """Dry-run a rule set against a context."""
        results = await self.evaluate(rules, ctx, execute=False)
        return results, summarize(results)
