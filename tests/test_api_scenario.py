"""
QA Tracking Dashboard
Tests — Scenario API.

Covers:
    - Scenario create with links in one save
    - Detail view per type
    - List filters (type, system, e2e parent / none) with counts
    - Replace-all link endpoints and type validation
    - Type change drops incompatible links
    - Delete removes links and compositions
    - Children reorder endpoint
    - Scenario results per cycle
"""

from app.models.scenario import ScenarioComposition, ScenarioRequirement


def _create(client, title, scenario_type="integration", **kw):
    res = client.post("/api/v1/scenarios", json={"title": title, "scenario_type": scenario_type, **kw})
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestScenarioCRUD:

    def test_create_integration_with_links(self, client, make_requirement):
        r1, r2 = make_requirement(feature_name="주문"), make_requirement(system="공급사", feature_name="발주")
        e2e = _create(client, "주문→발주", "e2e")
        body = _create(client, "주문 발주 연동", requirements=[r1.id, r2.id],
                       parents=[{"parent_id": e2e["id"], "order_index": 3}], system_ids=[1, 2])
        assert [r["requirement_id"] for r in body["linked_requirements"]] == [r1.id, r2.id]
        assert body["parent_e2es"] == [{"e2e_id": e2e["id"], "title": "주문→발주", "order_index": 3}]
        assert body["system_ids"] == [1, 2]

    def test_create_validates(self, client):
        assert client.post("/api/v1/scenarios", json={"title": ""}).status_code == 400
        res = client.post("/api/v1/scenarios", json={"title": "x", "scenario_type": "smoke"})
        assert res.status_code == 400

    def test_e2e_detail_lists_children_with_results(self, client, cycle):
        child = _create(client, "결제 연동")
        e2e = _create(client, "구매 여정", "e2e", children=[child["id"]])
        client.put(f"/api/v1/cycles/{cycle.id}/scenario-results/{child['id']}", json={"status": "Pass"})
        body = client.get(f"/api/v1/scenarios/{e2e['id']}?cycle_id={cycle.id}").get_json()
        assert body["children"][0]["integration_id"] == child["id"]
        assert body["children"][0]["result"]["status"] == "Pass"
        assert body["linked_requirements"] == []

    def test_list_filters(self, client, make_requirement):
        req = make_requirement()
        e2e = _create(client, "구매 여정", "e2e")
        linked = _create(client, "결제 연동", requirements=[req.id], parents=[e2e["id"]], system_ids=[1])
        orphan = _create(client, "배송 연동", system_ids=[2])

        items = client.get("/api/v1/scenarios").get_json()["items"]
        by_id = {i["id"]: i for i in items}
        assert by_id[linked["id"]]["req_count"] == 1
        assert by_id[e2e["id"]]["child_count"] == 1

        items = client.get("/api/v1/scenarios?scenario_type=integration&e2e=none").get_json()["items"]
        assert [i["id"] for i in items] == [orphan["id"]]
        items = client.get(f"/api/v1/scenarios?e2e={e2e['id']}&scenario_type=integration").get_json()["items"]
        assert [i["id"] for i in items] == [linked["id"]]
        items = client.get("/api/v1/scenarios?system_id=2").get_json()["items"]
        assert [i["id"] for i in items] == [orphan["id"]]

    def test_type_change_drops_incompatible_links(self, client, make_requirement):
        req = make_requirement()
        e2e = _create(client, "구매 여정", "e2e")
        s = _create(client, "결제 연동", requirements=[req.id], parents=[e2e["id"]])
        res = client.put(f"/api/v1/scenarios/{s['id']}", json={"scenario_type": "unit"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["parent_e2es"] == []
        assert len(body["linked_requirements"]) == 1
        assert ScenarioComposition.query.count() == 0

    def test_delete_removes_links(self, client, make_requirement):
        req = make_requirement()
        e2e = _create(client, "구매 여정", "e2e")
        s = _create(client, "결제 연동", requirements=[req.id], parents=[e2e["id"]])
        res = client.delete(f"/api/v1/scenarios/{s['id']}")
        assert res.status_code == 200
        assert ScenarioRequirement.query.count() == 0
        assert ScenarioComposition.query.count() == 0
        assert client.get(f"/api/v1/scenarios/{s['id']}").status_code == 404


class TestScenarioLinks:

    def test_replace_parents_rejects_wrong_type(self, client):
        e2e = _create(client, "구매 여정", "e2e")
        other = _create(client, "배송 연동")
        s = _create(client, "결제 연동", parents=[e2e["id"]])
        res = client.put(f"/api/v1/scenarios/{s['id']}/parents", json={"parents": [other["id"]]})
        assert res.status_code == 400
        parents = client.get(f"/api/v1/scenarios/{s['id']}/parents").get_json()
        assert [p["e2e_id"] for p in parents] == [e2e["id"]]

    def test_replace_requirements(self, client, make_requirement):
        r1, r2 = make_requirement(), make_requirement()
        s = _create(client, "결제 연동", requirements=[r1.id])
        res = client.put(f"/api/v1/scenarios/{s['id']}/requirements",
                         json={"requirements": [{"requirement_id": r2.id, "verify_note": "금액 확인"}]})
        assert res.status_code == 200
        assert [(r["requirement_id"], r["verify_note"]) for r in res.get_json()] == [(r2.id, "금액 확인")]

    def test_link_body_must_be_list(self, client):
        s = _create(client, "결제 연동")
        assert client.put(f"/api/v1/scenarios/{s['id']}/requirements", json={}).status_code == 400
        res = client.put(f"/api/v1/scenarios/{s['id']}/requirements", json={"requirements": 5})
        assert res.status_code == 400

    def test_reorder_children(self, client):
        a, b = _create(client, "A"), _create(client, "B")
        e2e = _create(client, "구매 여정", "e2e", children=[a["id"], b["id"]])
        res = client.post(f"/api/v1/scenarios/{e2e['id']}/children/reorder",
                          json={"action": "move", "index": 1, "direction": "up"})
        assert res.status_code == 200
        assert [c["integration_id"] for c in res.get_json()] == [b["id"], a["id"]]
        res = client.post(f"/api/v1/scenarios/{e2e['id']}/children/reorder", json={"action": "flip", "index": 0})
        assert res.status_code == 400


class TestScenarioResults:

    def test_upsert_reports_previous(self, client, cycle):
        s = _create(client, "결제 연동")
        url = f"/api/v1/cycles/{cycle.id}/scenario-results/{s['id']}"
        res = client.put(url, json={"status": "Fail", "issue_items": [{"text": "승인 누락"}]})
        assert res.get_json()["previous_status"] == "미테스트"
        res = client.put(url, json={"status": "Pass"})
        body = res.get_json()
        assert body["previous_status"] == "Fail"
        assert body["result"]["issue_items"][0]["text"] == "승인 누락"

    def test_unknown_scenario(self, client, cycle):
        res = client.put(f"/api/v1/cycles/{cycle.id}/scenario-results/999", json={"status": "Pass"})
        assert res.status_code == 404
