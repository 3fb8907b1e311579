"""
QA Tracking Dashboard
Test scenario models — two-level composition graph.

Models:
    - TestScenario:          unit / integration / e2e scenario
    - ScenarioRequirement:   ordered link scenario → requirement (unit, integration)
    - ScenarioComposition:   ordered link e2e (parent) → integration (child)
    - ScenarioResult:        per-(scenario, cycle) outcome

Architecture ref:
    e2e ──N:M (ordered)──▶ integration ──N:M (ordered)──▶ Requirement
                           unit        ──N:M (ordered)──▶ Requirement

    Composition edges only connect integration (child) to e2e (parent).
    order_index on a composition is scoped to its parent.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.testing import UNTESTED


# ── Constants ────────────────────────────────────────────────────────────

SCENARIO_TYPES = {"unit", "integration", "e2e"}
SCENARIO_STATUSES = {"active", "draft", "deprecated"}

# Scenario types that link to requirements directly
REQUIREMENT_LINK_TYPES = {"unit", "integration"}


class TestScenario(db.Model):
    """A test scenario. e2e scenarios have no direct requirement links."""

    __tablename__ = "test_scenarios"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    scenario_type = db.Column(
        db.String(20), nullable=False, default="integration",
        comment="unit | integration | e2e",
    )
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | draft | deprecated",
    )
    system_ids = db.Column(db.JSON, nullable=True, default=list)
    business_context = db.Column(db.Text, nullable=True)
    precondition = db.Column(db.Text, nullable=True)
    steps = db.Column(db.Text, nullable=True)
    expected_result = db.Column(db.Text, nullable=True)
    ai_generated = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    requirement_links = db.relationship(
        "ScenarioRequirement", back_populates="scenario", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="ScenarioRequirement.order_index",
    )
    results = db.relationship(
        "ScenarioResult", back_populates="scenario", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "scenario_type": self.scenario_type,
            "status": self.status,
            "system_ids": list(self.system_ids or []),
            "business_context": self.business_context,
            "precondition": self.precondition,
            "steps": self.steps,
            "expected_result": self.expected_result,
            "ai_generated": bool(self.ai_generated),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TestScenario {self.id}: [{self.scenario_type}] {self.title[:40]}>"


class ScenarioRequirement(db.Model):
    """Ordered join: scenario → requirement."""

    __tablename__ = "scenario_requirements"

    id = db.Column(db.Integer, primary_key=True)
    scenario_id = db.Column(
        db.Integer, db.ForeignKey("test_scenarios.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    requirement_id = db.Column(
        db.Integer, db.ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    order_index = db.Column(db.Integer, nullable=False, default=0)
    verify_note = db.Column(db.Text, nullable=True)

    scenario = db.relationship("TestScenario", back_populates="requirement_links")
    requirement = db.relationship("Requirement")

    __table_args__ = (
        db.UniqueConstraint("scenario_id", "requirement_id", name="uq_scenario_requirement"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "requirement_id": self.requirement_id,
            "order_index": self.order_index,
            "verify_note": self.verify_note,
        }

    def __repr__(self):
        return f"<ScenarioRequirement s#{self.scenario_id} → req#{self.requirement_id} @{self.order_index}>"


class ScenarioComposition(db.Model):
    """Ordered join: e2e parent → integration child. order_index is per parent."""

    __tablename__ = "scenario_compositions"

    parent_id = db.Column(
        db.Integer, db.ForeignKey("test_scenarios.id", ondelete="CASCADE"),
        primary_key=True,
    )
    child_id = db.Column(
        db.Integer, db.ForeignKey("test_scenarios.id", ondelete="CASCADE"),
        primary_key=True, index=True,
    )
    order_index = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "parent_id": self.parent_id,
            "child_id": self.child_id,
            "order_index": self.order_index,
        }

    def __repr__(self):
        return f"<ScenarioComposition e2e#{self.parent_id} → int#{self.child_id} @{self.order_index}>"


class ScenarioResult(db.Model):
    """Per-(scenario, cycle) outcome. Same shape as TestResult minus the legacy fields."""

    __tablename__ = "scenario_results"

    id = db.Column(db.Integer, primary_key=True)
    scenario_id = db.Column(
        db.Integer, db.ForeignKey("test_scenarios.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    cycle_id = db.Column(
        db.Integer, db.ForeignKey("test_cycles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default=UNTESTED)
    tester = db.Column(db.String(100), nullable=True)
    tested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    note = db.Column(db.Text, nullable=True)
    issue_items = db.Column(db.JSON, nullable=True, default=list)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    scenario = db.relationship("TestScenario", back_populates="results")

    __table_args__ = (
        db.UniqueConstraint("scenario_id", "cycle_id", name="uq_scenario_result_cycle"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "cycle_id": self.cycle_id,
            "status": self.status,
            "tester": self.tester,
            "tested_at": self.tested_at.isoformat() if self.tested_at else None,
            "note": self.note,
            "issue_items": list(self.issue_items or []),
        }

    def __repr__(self):
        return f"<ScenarioResult {self.id}: s#{self.scenario_id} cycle#{self.cycle_id} → {self.status}>"
