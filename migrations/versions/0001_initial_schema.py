"""Initial moderation schema

Revision ID: 5a1c0e7d2b90
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates reputation profiles and ledger, analysis records, current decisions
and the decision log, enforcement actions, threshold adjustments, the review
queue, rules and their trigger audit, feedback votes and override
recommendations.
Written manually (not via autogenerate) consistent with project migration policy.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5a1c0e7d2b90"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "reputation_profiles",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("overall_score", sa.Float(), nullable=False, server_default="100.0"),
        sa.Column("trust_level", sa.String(20), nullable=False, server_default="new"),
        sa.Column("factors_json", sa.JSON(), nullable=True),
        sa.Column("trend_json", sa.JSON(), nullable=True),
        sa.Column("recommendations_json", sa.JSON(), nullable=True),
        sa.Column("restriction_level", sa.String(20), nullable=False, server_default="none"),
        sa.Column("restriction_reason", sa.Text(), nullable=True),
        sa.Column("restriction_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("moderation_strikes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "account_created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("last_calculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )

    op.create_table(
        "reputation_events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("impact", sa.Float(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_reputation_events_user_id_created_at",
        "reputation_events",
        ["user_id", "created_at"],
    )

    op.create_table(
        "analysis_records",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("content_digest", sa.String(16), nullable=False),
        sa.Column("author_id", sa.String(64), nullable=False),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("spam_score", sa.Float(), nullable=False),
        sa.Column("quality_score", sa.Float(), nullable=False),
        sa.Column("toxicity_score", sa.Float(), nullable=False),
        sa.Column("overall_score", sa.Integer(), nullable=False),
        sa.Column("recommendation", sa.String(10), nullable=False),
        sa.Column("flags", sa.JSON(), nullable=True),
        sa.Column("result_json", sa.JSON(), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "content_id", "content_digest", name="uq_analysis_records_content_digest"
        ),
    )
    op.create_index("ix_analysis_records_author_id", "analysis_records", ["author_id"])

    op.create_table(
        "moderation_decisions",
        sa.Column("content_id", sa.String(64), primary_key=True),
        sa.Column("author_id", sa.String(64), nullable=True),
        sa.Column("content_type", sa.String(20), nullable=True),
        sa.Column("content_digest", sa.String(16), nullable=True),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("reasons", sa.JSON(), nullable=True),
        sa.Column("adjusted_spam_score", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("adjusted_toxicity_score", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("reputation_multiplier", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column(
            "decided_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index(
        "ix_moderation_decisions_action_decided_at",
        "moderation_decisions",
        ["action", "decided_at"],
    )

    op.create_table(
        "decision_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("author_id", sa.String(64), nullable=True),
        sa.Column("content_type", sa.String(20), nullable=True),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("reasons", sa.JSON(), nullable=True),
        sa.Column("flags", sa.JSON(), nullable=True),
        sa.Column("scores_json", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_decision_logs_content_id", "decision_logs", ["content_id"])

    op.create_table(
        "moderation_actions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("content_id", sa.String(64), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("action_type", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("performed_by", sa.String(64), nullable=False),
        sa.Column("duration_hours", sa.Integer(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_moderation_actions_user_id", "moderation_actions", ["user_id"])

    op.create_table(
        "threshold_adjustments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("delta", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "content_id", "name", name="uq_threshold_adjustments_content_name"
        ),
    )

    op.create_table(
        "queue_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("content_type", sa.String(20), nullable=True),
        sa.Column("queue_type", sa.String(20), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("added_by", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("assigned_to", sa.String(64), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index("ix_queue_items_status_priority", "queue_items", ["status", "priority"])
    op.create_index("ix_queue_items_content_id", "queue_items", ["content_id"])

    op.create_table(
        "moderation_rules",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("trigger_event", sa.String(30), nullable=False),
        sa.Column("definition", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=False, server_default="system"),
        sa.Column("times_triggered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index("ix_moderation_rules_is_active", "moderation_rules", ["is_active"])

    op.create_table(
        "rule_triggers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("rule_id", sa.String(64), nullable=False),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("matched_conditions", sa.JSON(), nullable=True),
        sa.Column("actions_executed", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_rule_triggers_rule_id", "rule_triggers", ["rule_id"])

    op.create_table(
        "feedback_votes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("voter_id", sa.String(64), nullable=False),
        sa.Column("original_action", sa.String(10), nullable=False),
        sa.Column("was_accurate", sa.Boolean(), nullable=False),
        sa.Column("suggested_action", sa.String(10), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("categories", sa.JSON(), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("voter_reputation", sa.Float(), nullable=False),
        sa.Column("voter_trust_level", sa.String(20), nullable=False),
        _created_at(),
        # One vote per voter per content item; concurrent duplicates fail here
        sa.UniqueConstraint(
            "content_id", "voter_id", name="uq_feedback_votes_content_id_voter_id"
        ),
    )
    op.create_index("ix_feedback_votes_content_id", "feedback_votes", ["content_id"])

    op.create_table(
        "override_recommendations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("original_action", sa.String(10), nullable=False),
        sa.Column("recommended_action", sa.String(10), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("total_votes", sa.Integer(), nullable=False),
        sa.Column("expert_votes", sa.Integer(), nullable=False),
        sa.Column("agreement_rate", sa.Float(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending_review"),
        sa.Column("resolved_by", sa.String(64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_override_recommendations_content_id_status",
        "override_recommendations",
        ["content_id", "status"],
    )


def downgrade() -> None:
    # Drop indexes before tables
    op.drop_index(
        "ix_override_recommendations_content_id_status", table_name="override_recommendations"
    )
    op.drop_table("override_recommendations")
    op.drop_index("ix_feedback_votes_content_id", table_name="feedback_votes")
    op.drop_table("feedback_votes")
    op.drop_index("ix_rule_triggers_rule_id", table_name="rule_triggers")
    op.drop_table("rule_triggers")
    op.drop_index("ix_moderation_rules_is_active", table_name="moderation_rules")
    op.drop_table("moderation_rules")
    op.drop_index("ix_queue_items_content_id", table_name="queue_items")
    op.drop_index("ix_queue_items_status_priority", table_name="queue_items")
    op.drop_table("queue_items")
    op.drop_table("threshold_adjustments")
    op.drop_index("ix_moderation_actions_user_id", table_name="moderation_actions")
    op.drop_table("moderation_actions")
    op.drop_index("ix_decision_logs_content_id", table_name="decision_logs")
    op.drop_table("decision_logs")
    op.drop_index(
        "ix_moderation_decisions_action_decided_at", table_name="moderation_decisions"
    )
    op.drop_table("moderation_decisions")
    op.drop_index("ix_analysis_records_author_id", table_name="analysis_records")
    op.drop_table("analysis_records")
    op.drop_index(
        "ix_reputation_events_user_id_created_at", table_name="reputation_events"
    )
    op.drop_table("reputation_events")
    op.drop_table("reputation_profiles")
