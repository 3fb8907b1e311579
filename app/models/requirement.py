"""
QA Tracking Dashboard
Requirement domain models.

Chain:  System ──1:N──▶ Requirement ──1:N──▶ RequirementChange (append-only)
        Requirement ──1:N──▶ TestResult (one per cycle, see app.models.testing)

Models:
    - System:            owning product surface (storefront / supplier / admin).
    - Requirement:       leaf test item with a four-level depth path.
    - RequirementChange: immutable audit row for every tracked-field edit.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PRIORITIES = {"high", "medium", "low"}

# Labels used by the original spreadsheets and the Korean UI
PRIORITY_ALIASES = {"높음": "high", "중간": "medium", "낮음": "low"}

DEPTH_FIELDS = ("depth_0", "depth_1", "depth_2", "depth_3")

DEFAULT_SYSTEMS = ("쇼핑몰", "공급사", "관리자")


def normalize_priority(value):
    """Map a priority label to ``high|medium|low`` or None.

    Raises ValueError for anything else so callers can report a 400.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    text = PRIORITY_ALIASES.get(text, text.lower())
    if text not in PRIORITIES:
        raise ValueError(f"Invalid priority: {value!r}")
    return text


def parse_related_ids(raw) -> list[int]:
    """Split a comma-joined display-id list, keeping order, dropping junk/dupes."""
    if not raw:
        return []
    tokens = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
    seen = []
    for token in tokens:
        text = str(token).strip().lstrip("#")
        if not text.isdigit():
            continue
        n = int(text)
        if n not in seen:
            seen.append(n)
    return seen


def format_related_ids(ids) -> str | None:
    """Inverse of parse_related_ids; empty list → None."""
    ids = parse_related_ids(ids)
    return ",".join(str(i) for i in ids) if ids else None


class System(db.Model):
    """A fixed product surface that owns requirements and scenarios."""

    __tablename__ = "systems"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    requirements = db.relationship("Requirement", back_populates="system", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<System {self.id}: {self.name}>"


class Requirement(db.Model):
    """
    Leaf test item.

    Classification path ``depth_0..depth_3`` is free text; a deeper level
    normally implies the shallower ones are filled but this is not enforced.
    ``display_id`` is assigned once at creation and never reassigned.
    ``related_ids`` holds other requirements' display ids, comma-joined,
    with no reciprocal link.
    """

    __tablename__ = "requirements"

    id = db.Column(db.Integer, primary_key=True)
    system_id = db.Column(
        db.Integer, db.ForeignKey("systems.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    display_id = db.Column(db.Integer, nullable=True, unique=True, index=True)

    depth_0 = db.Column(db.String(200), nullable=True, index=True)
    depth_1 = db.Column(db.String(200), nullable=True)
    depth_2 = db.Column(db.String(200), nullable=True)
    depth_3 = db.Column(db.String(200), nullable=True)
    feature_name = db.Column(db.String(300), nullable=True)
    original_spec = db.Column(db.Text, nullable=True, comment="Source text from the planning sheet")

    current_policy = db.Column(db.Text, nullable=True)
    policy_note = db.Column(db.Text, nullable=True)
    policy_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    precondition = db.Column(db.Text, nullable=True)
    test_steps = db.Column(db.Text, nullable=True)
    expected_result = db.Column(db.Text, nullable=True)

    priority = db.Column(db.String(10), nullable=True, comment="high | medium | low")
    related_ids = db.Column(db.Text, nullable=True, comment="Comma-joined display ids")
    scenario_link = db.Column(db.String(500), nullable=True)
    backlog_link = db.Column(db.String(500), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    system = db.relationship("System", back_populates="requirements")
    results = db.relationship(
        "TestResult", back_populates="requirement", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    changes = db.relationship(
        "RequirementChange", back_populates="requirement", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="RequirementChange.changed_at.desc()",
    )

    @property
    def depth_path(self) -> str:
        return " › ".join(getattr(self, f) for f in DEPTH_FIELDS if getattr(self, f))

    @property
    def has_scenario(self) -> bool:
        return bool(self.precondition or self.test_steps or self.expected_result)

    def to_dict(self):
        return {
            "id": self.id,
            "display_id": self.display_id,
            "system_id": self.system_id,
            "system_name": self.system.name if self.system else None,
            "depth_0": self.depth_0,
            "depth_1": self.depth_1,
            "depth_2": self.depth_2,
            "depth_3": self.depth_3,
            "feature_name": self.feature_name,
            "original_spec": self.original_spec,
            "current_policy": self.current_policy,
            "policy_note": self.policy_note,
            "policy_updated_at": self.policy_updated_at.isoformat() if self.policy_updated_at else None,
            "precondition": self.precondition,
            "test_steps": self.test_steps,
            "expected_result": self.expected_result,
            "priority": self.priority,
            "related_ids": self.related_ids,
            "scenario_link": self.scenario_link,
            "backlog_link": self.backlog_link,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Requirement #{self.display_id}: {(self.feature_name or '')[:40]}>"


class RequirementChange(db.Model):
    """Append-only audit row. Never updated after insert."""

    __tablename__ = "requirement_changes"

    id = db.Column(db.Integer, primary_key=True)
    requirement_id = db.Column(
        db.Integer, db.ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    changed_field = db.Column(db.String(50), nullable=False)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    change_reason = db.Column(db.Text, nullable=True)
    changed_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    requirement = db.relationship("Requirement", back_populates="changes")

    def to_dict(self):
        return {
            "id": self.id,
            "requirement_id": self.requirement_id,
            "changed_field": self.changed_field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "change_reason": self.change_reason,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return f"<RequirementChange {self.id}: req#{self.requirement_id} {self.changed_field}>"
