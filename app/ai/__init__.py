"""
Community Autopilot
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, usage logging)
    - prompt_registry: built-in audit prompt templates
    - audit_runner: audit sub-workflow execution
"""
