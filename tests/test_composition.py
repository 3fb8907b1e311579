"""
QA Tracking Dashboard
Tests — scenario composition graph.

Covers:
    - Per-parent order_index on edges written from the child side
    - Type validation leaves existing edges untouched
    - A failed write rolls back to the old edges
    - A second connection sees the old edges or the new ones, never none
    - Requirement links (e2e rejected)
    - In-memory reorder helpers and persisted reorder
"""

import pytest

from app import create_app
from app.config import TestingConfig, config
from app.core.exceptions import ValidationError
from app.models import db
from app.models.scenario import ScenarioComposition
from app.services import composition, scenario_service
from app.services.composition import move_item, move_to_position, remove_item


def _scenario(title, scenario_type):
    s = scenario_service.create_scenario({"title": title, "scenario_type": scenario_type})
    db.session.commit()
    return s


def _edges(child_id):
    return sorted(
        (e.parent_id, e.order_index)
        for e in ScenarioComposition.query.filter_by(child_id=child_id).all()
    )


class TestCompositionWrites:

    def test_child_side_keeps_order_per_parent(self):
        e1, e2 = _scenario("회원가입→주문", "e2e"), _scenario("입점→정산", "e2e")
        child = _scenario("결제 연동", "integration")
        composition.set_compositions_from_child(child.id, [
            {"parent_id": e1.id, "order_index": 2},
            {"parent_id": e2.id, "order_index": 5},
        ])
        db.session.commit()
        parents = composition.get_parent_e2es(child.id)
        assert {p["e2e_id"]: p["order_index"] for p in parents} == {e1.id: 2, e2.id: 5}

    def test_bare_ids_take_list_position(self):
        parent = _scenario("E2E", "e2e")
        a, b = _scenario("A", "integration"), _scenario("B", "integration")
        composition.set_compositions_from_parent(parent.id, [b.id, a.id])
        db.session.commit()
        children = composition.get_child_integrations(parent.id)
        assert [c["integration_id"] for c in children] == [b.id, a.id]
        assert [c["order_index"] for c in children] == [0, 1]

    def test_wrong_type_leaves_edges_untouched(self):
        e1 = _scenario("E2E", "e2e")
        child = _scenario("결제 연동", "integration")
        other = _scenario("배송 연동", "integration")
        composition.set_compositions_from_child(child.id, [e1.id])
        db.session.commit()

        with pytest.raises(ValidationError):
            composition.set_compositions_from_child(child.id, [e1.id, other.id])
        db.session.rollback()
        assert _edges(child.id) == [(e1.id, 0)]

    def test_unknown_parent_rejected(self):
        child = _scenario("결제 연동", "integration")
        with pytest.raises(ValidationError):
            composition.set_compositions_from_child(child.id, [9999])

    def test_failed_write_keeps_old_edges(self, monkeypatch):
        e1, e2 = _scenario("E1", "e2e"), _scenario("E2", "e2e")
        child = _scenario("결제 연동", "integration")
        composition.set_compositions_from_child(child.id, [e1.id])
        db.session.commit()

        def boom(*args, **kwargs):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(db.session, "add_all", boom)
        with pytest.raises(RuntimeError):
            composition.set_compositions_from_child(child.id, [e2.id])
        monkeypatch.undo()
        db.session.rollback()
        assert _edges(child.id) == [(e1.id, 0)]

    def test_e2e_cannot_link_requirements(self, make_requirement):
        req = make_requirement()
        e2e = _scenario("E2E", "e2e")
        with pytest.raises(ValidationError):
            composition.set_scenario_requirements(e2e.id, [req.id])

    def test_requirement_links_ordered_with_notes(self, make_requirement):
        r1 = make_requirement(feature_name="장바구니")
        r2 = make_requirement(system="관리자", feature_name="주문 승인")
        s = _scenario("주문 처리", "integration")
        composition.set_scenario_requirements(s.id, [
            {"requirement_id": r2.id, "order_index": 0, "verify_note": "승인 버튼"},
            {"requirement_id": r1.id, "order_index": 1},
        ])
        db.session.commit()
        linked = composition.get_linked_requirements(s.id)
        assert [r["requirement_id"] for r in linked] == [r2.id, r1.id]
        assert linked[0]["verify_note"] == "승인 버튼"
        assert linked[0]["system_name"] == "관리자"


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    """App on a SQLite file so a second connection reads committed state only."""
    class FileDbConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'qa_tracker.db'}"

    monkeypatch.setitem(config, "file", FileDbConfig)
    application = create_app("file")
    with application.app_context():
        yield application
        db.session.remove()
        db.engine.dispose()


def _committed_parents(child_id):
    with db.engine.connect() as conn:
        rows = conn.execute(
            db.select(ScenarioComposition.parent_id).where(ScenarioComposition.child_id == child_id)
        ).all()
    return sorted(r[0] for r in rows)


class TestCompositionVisibility:

    def test_reader_never_sees_empty_edge_set(self, file_app, monkeypatch):
        e1, e2, e3 = (_scenario(f"E2E {n}", "e2e") for n in range(3))
        child = _scenario("결제 연동", "integration")
        ids = {"e1": e1.id, "e2": e2.id, "e3": e3.id, "child": child.id}
        composition.set_compositions_from_child(ids["child"], [ids["e1"]])
        db.session.commit()

        seen = []
        add_all = db.session.add_all

        def add_all_after_delete(instances):
            seen.append(_committed_parents(ids["child"]))
            return add_all(instances)

        monkeypatch.setattr(db.session, "add_all", add_all_after_delete)
        composition.set_compositions_from_child(ids["child"], [ids["e2"], ids["e3"]])
        seen.append(_committed_parents(ids["child"]))
        db.session.commit()
        seen.append(_committed_parents(ids["child"]))

        assert seen == [[ids["e1"]], [ids["e1"]], sorted([ids["e2"], ids["e3"]])]


class TestReorder:

    def test_move_item_out_of_range_is_unchanged(self):
        assert move_item([1, 2, 3], 0, "up") == [1, 2, 3]
        assert move_item([1, 2, 3], 2, "down") == [1, 2, 3]
        assert move_item([1, 2, 3], 1, "up") == [2, 1, 3]

    def test_move_to_position_clamps(self):
        assert move_to_position([1, 2, 3], 0, 10) == [2, 3, 1]
        assert move_to_position([1, 2, 3], 2, -4) == [3, 1, 2]

    def test_remove_item(self):
        assert remove_item([1, 2, 3], 1) == [1, 3]
        with pytest.raises(ValidationError):
            remove_item([1], 3)

    def test_reorder_children_persists(self):
        parent = _scenario("E2E", "e2e")
        a, b, c = (_scenario(t, "integration") for t in ("A", "B", "C"))
        composition.set_compositions_from_parent(parent.id, [a.id, b.id, c.id])
        db.session.commit()

        children = composition.reorder_children(parent.id, {"action": "move", "index": 0,
                                                            "direction": "down"})
        assert [ch["integration_id"] for ch in children] == [b.id, a.id, c.id]

        children = composition.reorder_children(parent.id, {"action": "move_to", "index": 2,
                                                            "position": 0})
        assert [ch["integration_id"] for ch in children] == [c.id, b.id, a.id]
        assert [ch["order_index"] for ch in children] == [0, 1, 2]

        children = composition.reorder_children(parent.id, {"action": "remove", "index": 1})
        assert [ch["integration_id"] for ch in children] == [c.id, a.id]
