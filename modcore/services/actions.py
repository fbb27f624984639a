"""Enforcement side effects for decisions and rule actions.

The decision engine only plans; everything that touches the store after a
decision (hiding, warnings, queue entries, restrictions) runs through
ActionExecutor so the same semantics apply whether a side effect came from
the decision matrix or from a triggered rule.
"""

from datetime import timedelta
from typing import Optional

import structlog

from modcore.config import Settings, settings
from modcore.models.base import utcnow
from modcore.schemas.analysis import Severity
from modcore.schemas.content import Content
from modcore.schemas.decision import (
    ModerationDecision,
    PlannedAction,
    PlannedActionType,
    QueueType,
)
from modcore.schemas.reputation import EventCategory, preset_event
from modcore.schemas.rule import ActionTarget, ActionType, ModerationRule
from modcore.services.reputation import ReputationEngine
from modcore.services.rule_fields import RuleContext
from modcore.store import ModerationStore

log = structlog.get_logger()

SYSTEM_ACTOR = "automated_moderation"
RULES_ACTOR = "rules_engine"

_FLAG_PRIORITY = {Severity.critical: 9, Severity.high: 7}


def action_label(action) -> str:
    return f"{action.type.value}:{action.target.value}"


class ActionExecutor:
    def __init__(
        self,
        store: ModerationStore,
        reputation: ReputationEngine,
        app_settings: Settings = settings,
    ) -> None:
        self._store = store
        self._reputation = reputation
        self._settings = app_settings

    # ------------------------------------------------------------------
    # Primitive side effects
    # ------------------------------------------------------------------

    async def hide(self, content_id: str, reason: str, performed_by: str) -> None:
        await self._store.record_action("hide", reason, performed_by, content_id=content_id)

    async def warn(
        self,
        user_id: str,
        reason: str,
        performed_by: str,
        content_id: Optional[str] = None,
        event: str = "warning_issued",
    ) -> None:
        """Warn a user: audit row, one strike and a ledger penalty."""
        await self._store.record_action(
            "warn", reason, performed_by, content_id=content_id, user_id=user_id
        )
        await self._store.add_strike(user_id)
        await self._reputation.record_event(user_id, preset_event(event, reason))

    async def restrict(
        self,
        user_id: str,
        hours: int,
        reason: str,
        performed_by: str,
        penalty: float = 0.0,
    ) -> None:
        """Restrict posting for a number of hours, optionally deducting reputation."""
        expires_at = utcnow() + timedelta(hours=hours)
        await self._store.restrict_user(user_id, reason, expires_at)
        await self._store.record_action(
            "restrict", reason, performed_by, user_id=user_id, duration_hours=hours
        )
        if penalty:
            await self._reputation.adjust_score(
                user_id,
                -penalty,
                reason,
                category=EventCategory.violation,
                action_type="automated_restriction",
            )
        log.info("user_restricted", user_id=user_id, hours=hours, penalty=penalty)

    async def enqueue(
        self,
        content: Content,
        queue_type: QueueType,
        priority: int,
        reason: str,
        added_by: str,
    ) -> None:
        await self._store.enqueue(
            content.id,
            queue_type.value,
            priority,
            reason,
            added_by,
            content_type=content.type.value,
        )

    async def notify_moderators(
        self, content_id: str, severity: Severity, reason: str, performed_by: str
    ) -> None:
        # Delivery (mail, chat) belongs to the surrounding application; the
        # audit row is what it polls.
        await self._store.record_action("notify", reason, performed_by, content_id=content_id)
        log.warning(
            "moderators_notified",
            content_id=content_id,
            severity=severity.value,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Decision plans
    # ------------------------------------------------------------------

    async def execute_plan(
        self, content: Content, decision: ModerationDecision, plan: list[PlannedAction]
    ) -> None:
        """Run the planned side effects of a decision in order."""
        for planned in plan:
            if planned.type == PlannedActionType.hide:
                await self.hide(content.id, planned.reason, SYSTEM_ACTOR)
            elif planned.type == PlannedActionType.warn:
                await self.warn(
                    content.author_id,
                    planned.reason,
                    SYSTEM_ACTOR,
                    content_id=content.id,
                    event="content_blocked",
                )
            elif planned.type == PlannedActionType.queue:
                await self.enqueue(
                    content, planned.queue_type, planned.priority, planned.reason, SYSTEM_ACTOR
                )
            elif planned.type == PlannedActionType.notify:
                await self.notify_moderators(
                    content.id, Severity.high, planned.reason, SYSTEM_ACTOR
                )
            elif planned.type == PlannedActionType.restrict:
                await self.restrict(
                    content.author_id,
                    planned.duration_hours or self._settings.restriction_hours,
                    planned.reason,
                    SYSTEM_ACTOR,
                    penalty=planned.reputation_penalty or 0.0,
                )
        log.info(
            "decision_actions_executed",
            content_id=content.id,
            action=decision.action.value,
            executed=[p.type.value for p in plan],
        )

    # ------------------------------------------------------------------
    # Rule actions
    # ------------------------------------------------------------------

    async def execute_rule_action(self, action, rule: ModerationRule, ctx: RuleContext) -> bool:
        """Perform one rule action. Returns False when the action does not apply.

        warn and restrict only act on user targets; assign needs an assignee.
        """
        content = ctx.content
        if action.type == ActionType.block:
            await self._store.record_action(
                "block",
                action.reason or f"Blocked by rule: {rule.name}",
                RULES_ACTOR,
                content_id=content.id,
            )
        elif action.type == ActionType.flag:
            await self.enqueue(
                content,
                QueueType.monitoring,
                _FLAG_PRIORITY.get(action.severity, 5),
                action.reason or rule.name,
                RULES_ACTOR,
            )
        elif action.type == ActionType.review:
            await self.enqueue(
                content,
                QueueType.review,
                rule.priority,
                action.reason or f"Rule: {rule.name}",
                RULES_ACTOR,
            )
        elif action.type == ActionType.warn:
            if action.target != ActionTarget.user:
                return False
            await self.warn(
                content.author_id,
                action.reason or f"Warning from rule: {rule.name}",
                RULES_ACTOR,
                content_id=content.id,
            )
        elif action.type == ActionType.restrict:
            if action.target != ActionTarget.user:
                return False
            await self.restrict(
                content.author_id,
                action.duration_hours,
                action.reason or rule.name,
                RULES_ACTOR,
            )
        elif action.type == ActionType.notify:
            await self.notify_moderators(
                content.id,
                action.severity,
                action.notification_template or f'Rule "{rule.name}" triggered',
                RULES_ACTOR,
            )
        elif action.type == ActionType.assign:
            await self._store.assign_queue_items(content.id, action.assign_to)
        elif action.type == ActionType.escalate:
            await self.enqueue(
                content,
                QueueType.admin_review,
                min(10, 9 + action.escalation_level),
                action.reason or f"Escalated by rule: {rule.name}",
                RULES_ACTOR,
            )
            await self._store.escalate_queue_items(content.id, action.escalation_level)
        return True
