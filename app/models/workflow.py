"""
Community Autopilot
Workflow catalogue: stages, audit sub-workflows, lifecycle guards.

Stages (linear, no skipping):
    BRIEF_RECEIVED → AUDIT_SEARCH → STRATEGY_GEN → ACTION_PLAN → PRODUCTION

Audit sub-workflows (10 fixed types):
    phase_1: competitive_analysis, market_analysis, keyword_research,
             seo_audit, trend_analysis
    phase_2: deep_competitor_audit, content_opportunities,
             backlink_analysis, technical_audit, strategic_recommendations

The phase of an audit result is a pure function of its workflow type and
is never stored.
"""

from enum import Enum


class WorkflowStage(str, Enum):
    BRIEF_RECEIVED = "BRIEF_RECEIVED"
    AUDIT_SEARCH = "AUDIT_SEARCH"
    STRATEGY_GEN = "STRATEGY_GEN"
    ACTION_PLAN = "ACTION_PLAN"
    PRODUCTION = "PRODUCTION"


STAGE_ORDER = [
    WorkflowStage.BRIEF_RECEIVED,
    WorkflowStage.AUDIT_SEARCH,
    WorkflowStage.STRATEGY_GEN,
    WorkflowStage.ACTION_PLAN,
    WorkflowStage.PRODUCTION,
]

# Unset stage means "not yet briefed"
INITIAL_STAGE = WorkflowStage.BRIEF_RECEIVED


# ── Project attributes ───────────────────────────────────────────────────────

PROJECT_STATUSES = {"active", "planned", "completed"}

BRIEFING_STATUSES = {"not_sent", "sent", "completed"}

ROTATION_PERIODS = {"15_days", "1_month", "3_months", "6_months"}

BRIEFING_CONTEXTS = {
    "NEW_LAUNCH", "MAINTENANCE", "REBRANDING",
    "EVENT_PROMOTION", "CRISIS_MANAGEMENT",
}


# ── Audit sub-workflows ──────────────────────────────────────────────────────

PHASE_1_WORKFLOWS = (
    "competitive_analysis",
    "market_analysis",
    "keyword_research",
    "seo_audit",
    "trend_analysis",
)

PHASE_2_WORKFLOWS = (
    "deep_competitor_audit",
    "content_opportunities",
    "backlink_analysis",
    "technical_audit",
    "strategic_recommendations",
)

AUDIT_WORKFLOW_TYPES = PHASE_1_WORKFLOWS + PHASE_2_WORKFLOWS

AUDIT_TOTAL_STEPS = len(AUDIT_WORKFLOW_TYPES)

WORKFLOW_LABELS = {
    "competitive_analysis": "Competitive Analysis",
    "market_analysis": "Market Analysis",
    "keyword_research": "Keyword Research",
    "seo_audit": "SEO Audit",
    "trend_analysis": "Trend Analysis",
    "deep_competitor_audit": "Deep Competitor Scan",
    "content_opportunities": "Content Gaps",
    "backlink_analysis": "Backlink Recon",
    "technical_audit": "Tech Stack Audit",
    "strategic_recommendations": "Strategy Synth",
}

# "pending" is the placeholder written before a step starts
AUDIT_RESULT_STATUSES = {"pending", "running", "completed", "failed"}

AUDIT_TERMINAL_STATUSES = {"completed", "failed"}

# Derived run state of the whole audit
AUDIT_RUN_STATES = {"running", "paused", "completed"}


def phase_for(workflow_type: str) -> str:
    """Return ``phase_1`` or ``phase_2`` for a known workflow type."""
    if workflow_type in PHASE_1_WORKFLOWS:
        return "phase_1"
    if workflow_type in PHASE_2_WORKFLOWS:
        return "phase_2"
    raise ValueError(f"Unknown audit workflow type: {workflow_type}")


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STAGE_TRANSITIONS = {
    WorkflowStage.BRIEF_RECEIVED: [WorkflowStage.AUDIT_SEARCH],
    WorkflowStage.AUDIT_SEARCH:   [WorkflowStage.STRATEGY_GEN],
    WorkflowStage.STRATEGY_GEN:   [WorkflowStage.ACTION_PLAN],
    WorkflowStage.ACTION_PLAN:    [WorkflowStage.PRODUCTION],
    WorkflowStage.PRODUCTION:     [],
}

# External event → (required stage, next stage)
STAGE_EVENTS = {
    "brief_completed":       (WorkflowStage.BRIEF_RECEIVED, WorkflowStage.AUDIT_SEARCH),
    "audit_completed":       (WorkflowStage.AUDIT_SEARCH, WorkflowStage.STRATEGY_GEN),
    "strategy_approved":     (WorkflowStage.STRATEGY_GEN, WorkflowStage.ACTION_PLAN),
    "action_plan_finalized": (WorkflowStage.ACTION_PLAN, WorkflowStage.PRODUCTION),
}

WORKFLOW_EVENT_TYPES = set(STAGE_EVENTS) | {
    "auto_advanced",
    "audit_reset",
    "audit_step_completed",
    "audit_step_failed",
    "autopilot_enabled",
    "autopilot_disabled",
    "global_autopilot_enabled",
    "global_autopilot_disabled",
}


def validate_stage_transition(old_stage, new_stage):
    """Return True if a stage transition is valid."""
    return WorkflowStage(new_stage) in STAGE_TRANSITIONS.get(WorkflowStage(old_stage), [])


def coerce_stage(value) -> WorkflowStage:
    """Map a stored stage value (``None`` = unset) to a WorkflowStage."""
    if value is None or value == "":
        return INITIAL_STAGE
    return WorkflowStage(value)


# Summary recorded on a failed audit step
AUDIT_FAILED_SUMMARY = "Automated analysis failed. Please retry."
