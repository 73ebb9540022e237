"""
Community Autopilot
Audit Runner.

Runs one audit sub-workflow through the LLM gateway and turns the answer
into an ``AuditResultRecord``. ``run`` never raises: any failure becomes
a ``failed`` result with a generic summary.
"""

import json
import logging
import re

from app.ai.gateway import LLMGateway
from app.ai.prompt_registry import PromptRegistry
from app.models.workflow import AUDIT_FAILED_SUMMARY, AUDIT_WORKFLOW_TYPES
from app.services.project_store import AuditResultRecord, utcnow_iso

logger = logging.getLogger(__name__)

FAILED_SUMMARY = AUDIT_FAILED_SUMMARY
DEFAULT_SUMMARY = "Analysis completed."

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_json_payload(text: str) -> dict:
    """Parse a JSON object from model output, tolerating a fenced block."""
    text = (text or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    if not text:
        return {}
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


class AuditRunner:
    """
    Executes audit sub-workflows and the consolidated research sweep.

    Args:
        gateway: LLMGateway used for every call.
        prompts: PromptRegistry holding the audit templates.
        model: Model for per-workflow analyses.
        research_model: Model for the consolidated research sweep.
    """

    def __init__(self, gateway: LLMGateway | None = None, prompts: PromptRegistry | None = None,
                 *, model: str | None = None, research_model: str | None = None):
        self.gateway = gateway or LLMGateway()
        self.prompts = prompts or PromptRegistry()
        self.model = model
        self.research_model = research_model or model

    @classmethod
    def from_config(cls, config) -> "AuditRunner":
        return cls(
            LLMGateway.from_config(config),
            PromptRegistry(),
            model=config.get("LLM_DEFAULT_CHAT_MODEL"),
            research_model=config.get("LLM_RESEARCH_MODEL"),
        )

    @staticmethod
    def _context_json(context) -> str:
        return json.dumps(context or {}, ensure_ascii=False, default=str)

    def research(self, context: dict) -> str:
        """Run the consolidated research sweep. Raises on failure."""
        messages = self.prompts.render("consolidated_research", context=self._context_json(context))
        result = self.gateway.chat(messages, self.research_model, purpose="consolidated_research")
        text = (result.get("content") or "").strip()
        if not text:
            raise RuntimeError("Research generation returned no content")
        return text

    def run(self, workflow_type: str, context: dict,
            cached_research: str | None = None) -> AuditResultRecord:
        """Run one audit step; returns ``completed`` or ``failed``, never raises."""
        try:
            if workflow_type not in AUDIT_WORKFLOW_TYPES:
                raise ValueError(f"Unknown audit workflow type: {workflow_type}")

            context_str = self._context_json(context)
            if cached_research:
                base = (
                    "Act as a Senior Analyst. Use the following RESEARCH REPORT as your "
                    "primary source of truth. Do NOT hallucinate.\n"
                    f"RESEARCH REPORT:\n{cached_research}\n\n"
                    "Based on this report, generate the specific analysis below:"
                )
            else:
                base = f"Analyze the following context: {context_str}."

            messages = self.prompts.render(
                f"audit_{workflow_type}", base_instructions=base, context=context_str,
            )
            response = self.gateway.chat(
                messages, self.model, purpose=f"audit:{workflow_type}", json_mode=True,
            )
            data = parse_json_payload(response.get("content", ""))

            score = data.get("score")
            return AuditResultRecord(
                workflow_type=workflow_type,
                status="completed",
                summary=data.get("summary") or DEFAULT_SUMMARY,
                score=float(score) if isinstance(score, (int, float)) else None,
                sources=list(data.get("sources") or []),
                tables=list(data.get("tables") or []),
                completed_at=utcnow_iso(),
            )
        except Exception as e:
            logger.error("Audit workflow %s failed: %s", workflow_type, e,
                         extra={"workflow_type": workflow_type})
            return AuditResultRecord(
                workflow_type=workflow_type,
                status="failed",
                summary=FAILED_SUMMARY,
                completed_at=utcnow_iso(),
            )
