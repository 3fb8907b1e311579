"""
QA Tracking Dashboard
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing, streaming, usage logging)
    - prompt_registry: YAML prompt template loading
    - assistants: QA insights and scenario drafting
"""
