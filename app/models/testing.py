"""
QA Tracking Dashboard
Testing domain models — cycles and per-requirement results.

Models:
    - TestCycle:   named, time-boxed testing pass
    - TestResult:  outcome of one requirement within one cycle

Architecture ref:
    Test Cycle ──1:N──▶ Test Result ◀──N:1── Requirement
    UNIQUE(requirement_id, cycle_id): at most one result per pair.
    No row for a pair means the requirement is untested (미테스트) in that cycle.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────

UNTESTED = "미테스트"

# Statuses a stored row may carry, in dashboard display order
TESTED_STATUSES = ("Pass", "Fail", "Block", "In Progress")
RESULT_STATUSES = TESTED_STATUSES + (UNTESTED,)

RETEST_REASONS = {"UI/UX change", "policy change", "other"}

ISSUE_SEVERITIES = {"critical", "high", "medium", "low"}
SEVERITY_ALIASES = {"크리티컬": "critical", "하이": "high", "미디엄": "medium", "로우": "low"}
SEVERITY_UNSET = "unset"
SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3, SEVERITY_UNSET: 4}


class TestCycle(db.Model):
    """A named testing pass. Results and scenario results are scoped to one cycle."""

    __tablename__ = "test_cycles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    started_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    results = db.relationship(
        "TestResult", back_populates="cycle", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "is_open": self.is_open,
        }

    def __repr__(self):
        return f"<TestCycle {self.id}: {self.name}>"


class TestResult(db.Model):
    """
    Per-(requirement, cycle) outcome.

    ``issue_items`` is the primary issue representation. ``issue_raised`` /
    ``issue_fixed`` and the legacy ``issue_ids`` string are derived from it
    on every save (see app.services.result_service).
    """

    __tablename__ = "test_results"

    id = db.Column(db.Integer, primary_key=True)
    requirement_id = db.Column(
        db.Integer, db.ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    cycle_id = db.Column(
        db.Integer, db.ForeignKey("test_cycles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(
        db.String(20), nullable=False, default=UNTESTED,
        comment="Pass | Fail | Block | In Progress | 미테스트",
    )
    tester = db.Column(db.String(100), nullable=True)
    tested_at = db.Column(db.DateTime(timezone=True), nullable=True)

    issue_ids = db.Column(db.Text, nullable=True, comment="Legacy comma-joined issue numbers")
    issue_raised = db.Column(db.Boolean, nullable=False, default=False)
    issue_fixed = db.Column(db.Boolean, nullable=False, default=False)
    issue_items = db.Column(db.JSON, nullable=True, default=list)

    retest_reason = db.Column(
        db.String(30), nullable=True, comment="UI/UX change | policy change | other",
    )
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    requirement = db.relationship("Requirement", back_populates="results")
    cycle = db.relationship("TestCycle", back_populates="results")

    __table_args__ = (
        db.UniqueConstraint("requirement_id", "cycle_id", name="uq_result_requirement_cycle"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "requirement_id": self.requirement_id,
            "cycle_id": self.cycle_id,
            "status": self.status,
            "tester": self.tester,
            "tested_at": self.tested_at.isoformat() if self.tested_at else None,
            "issue_ids": self.issue_ids,
            "issue_raised": bool(self.issue_raised),
            "issue_fixed": bool(self.issue_fixed),
            "issue_items": list(self.issue_items or []),
            "retest_reason": self.retest_reason,
            "note": self.note,
        }

    def __repr__(self):
        return f"<TestResult {self.id}: req#{self.requirement_id} cycle#{self.cycle_id} → {self.status}>"
