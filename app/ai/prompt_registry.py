"""
Community Autopilot
Prompt Registry.

Built-in prompt templates with:
    - {{variable}} rendering
    - Version tracking

Templates:
    - consolidated_research: one research sweep shared by all audit steps
    - audit_<workflow_type>: one per audit sub-workflow

Usage:
    from app.ai.prompt_registry import PromptRegistry
    registry = PromptRegistry()
    messages = registry.render("audit_seo_audit",
                               base_instructions="Analyze ...",
                               context='{"name": "TechFlow"}')
"""

import logging
import re

from app.models.workflow import AUDIT_WORKFLOW_TYPES

logger = logging.getLogger(__name__)


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str,
                 description: str = "", metadata: dict | None = None):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description
        self.metadata = metadata or {}

    def render(self, **variables) -> list[dict]:
        """
        Render template with variables, returning chat messages.

        Variables are replaced using {{variable_name}} syntax.

        Returns:
            List of message dicts: [{"role": "system", "content": "..."}, ...]
        """
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        """Replace {{var}} placeholders with values."""
        def replacer(match):
            key = match.group(1).strip()
            return str(variables.get(key, f"{{{{{key}}}}}"))
        return re.sub(r'\{\{(\s*\w+\s*)\}\}', replacer, template)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "system_preview": self.system[:200],
            "user_preview": self.user[:200],
        }


class PromptRegistry:
    """Registry of prompt templates keyed by name and version."""

    def __init__(self, templates: list[PromptTemplate] | None = None):
        self._templates: dict[str, dict[str, PromptTemplate]] = {}  # name → {version → template}
        for tpl in _DEFAULT_TEMPLATES:
            self._register(tpl)
        for tpl in templates or []:
            self._register(tpl)

    def _register(self, template: PromptTemplate):
        """Add template to registry."""
        if template.name not in self._templates:
            self._templates[template.name] = {}
        self._templates[template.name][template.version] = template

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        """Get a prompt template by name and version."""
        versions = self._templates.get(name, {})
        return versions.get(version)

    def render(self, name: str, version: str = "v1", **variables) -> list[dict]:
        """
        Render a prompt template with variables.

        Raises:
            KeyError: If template not found.
        """
        tpl = self.get(name, version)
        if not tpl:
            raise KeyError(f"Prompt template not found: {name} v{version}")
        return tpl.render(**variables)

    def list_templates(self) -> list[dict]:
        """List all registered templates."""
        return [tpl.to_dict() for versions in self._templates.values() for tpl in versions.values()]


# ── Built-in Default Templates ────────────────────────────────────────────────

_ANALYST_SYSTEM = (
    "You are a senior digital marketing analyst working for a community-management "
    "agency. You produce concise, factual analyses for a client project. "
    "Do not invent data you were not given."
)

_JSON_CONTRACT = (
    'Return JSON: { "summary": "string", "score": number (0-100), '
    '"sources": [{"title": "string", "uri": "string"}], '
    '"tables": [{"title": "{{table_title}}", "headers": ["string"], "rows": [["string"]]}] }'
)

# workflow type → (task, table title)
_AUDIT_TASKS = {
    "competitive_analysis": ("Identify 3 direct competitors. Analyze their strengths and weaknesses.",
                             "Competitor Matrix"),
    "market_analysis": ("Market analysis. Identify TAM/SAM/SOM and the target audience.",
                        "Demographics"),
    "keyword_research": ("Keyword strategy. Focus on transactional intent.", "Top Keywords"),
    "seo_audit": ("SEO audit. Identify technical issues based on industry standards.", "SEO Issues"),
    "trend_analysis": ("Identify emerging trends in this sector.", "Trend Watch"),
    "deep_competitor_audit": ("Deep dive into the competitors' content strategy.", "Content Gap"),
    "content_opportunities": ("Identify 5 viral content opportunities.", "Content Ideas"),
    "backlink_analysis": ("Analyze potential backlink sources.", "Outreach Targets"),
    "technical_audit": ("Advanced technical audit (speed, mobile, Core Web Vitals).", "Tech Fixes"),
    "strategic_recommendations": ("Synthesize all findings into strategic recommendations.", "Roadmap"),
}


def _audit_template(workflow_type: str) -> PromptTemplate:
    task, table_title = _AUDIT_TASKS[workflow_type]
    contract = _JSON_CONTRACT.replace("{{table_title}}", table_title)
    return PromptTemplate(
        name=f"audit_{workflow_type}",
        version="v1",
        description=f"Audit sub-workflow: {workflow_type}",
        system=_ANALYST_SYSTEM,
        user="{{base_instructions}}\n\n" + task + "\nProject: {{context}}\n\n" + contract,
        metadata={"workflow_type": workflow_type, "json": True},
    )


_DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="consolidated_research",
        version="v1",
        description="Research sweep cached on the project and reused by every audit step",
        system=_ANALYST_SYSTEM,
        user=(
            "Act as a Senior Market Intelligence Analyst. Perform a consolidated research "
            "sweep for the following project:\n"
            "PROJECT CONTEXT: {{context}}\n\n"
            "Gather data for the following 5 dimensions:\n"
            "1. COMPETITIVE LANDSCAPE: top 3 direct competitors, strengths, weaknesses, channels.\n"
            "2. MARKET ANALYSIS: market size, growth trends, target audience demographics.\n"
            "3. SEO INTELLIGENCE: high-volume transactional keywords and content gaps.\n"
            "4. EMERGING TRENDS: what is trending right now in this sector.\n"
            "5. TECHNICAL BENCHMARKS: web performance and tech stack expectations.\n\n"
            "Compile this into a comprehensive \"Global Research Report\" with clear headers."
        ),
    ),
] + [_audit_template(wf) for wf in AUDIT_WORKFLOW_TYPES]
