"""
QA Tracking Dashboard
AI Assistants package.

Assistants:
    - qa_insights: cycle-wide priority analysis, streamed as markdown
    - scenario_generator: requirement selection → one test scenario draft
"""

from app.ai.assistants.qa_insights import QAInsights
from app.ai.assistants.scenario_generator import ScenarioGenerator

__all__ = [
    "QAInsights",
    "ScenarioGenerator",
]
