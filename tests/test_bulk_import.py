"""
QA Tracking Dashboard
Tests — spreadsheet import.

Covers:
    - Header location and fuzzy column mapping
    - Fill-down of merged depth cells (deeper levels reset)
    - Separator rows without spec text are dropped
    - CSV and XLSX uploads (preview + import)
    - Rejected files
"""

import io

import pytest
from openpyxl import Workbook

from app.services.bulk_import_service import (
    BulkImportError,
    build_column_map,
    fill_down_depths,
    locate_header,
    map_rows,
)

HEADER = ["No", "0Depth", "1Depth", "2Depth", "기능명", "상세 설명"]

ROWS = [
    ["도매랑 기획서 v3", "", "", "", "", ""],
    HEADER,
    ["1", "주문", "장바구니", "담기", "담기 버튼", "상품을 장바구니에 담는다"],
    ["2", "", "", "삭제", "삭제 버튼", "장바구니에서 삭제한다"],
    ["", "", "결제", "", "", ""],
    ["3", "", "", "", "카드 결제", "신용카드로 결제한다"],
    ["4", "회원", "", "", "가입", "이메일로 가입한다"],
]


def _csv_bytes(rows):
    buf = io.StringIO()
    for row in rows:
        buf.write(",".join(row) + "\n")
    return buf.getvalue().encode("utf-8-sig")


def _xlsx_bytes(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append([c or None for c in row])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class TestMapping:

    def test_header_found_below_title_row(self):
        assert locate_header(ROWS) == 1

    def test_column_map(self):
        col_map = build_column_map(HEADER)
        assert col_map["depth_0"] == 1
        assert col_map["depth_2"] == 3
        assert col_map["depth_3"] == -1
        assert col_map["feature_name"] == 4
        assert col_map["original_spec"] == 5

    def test_missing_columns_rejected(self):
        with pytest.raises(BulkImportError):
            build_column_map(["번호", "내용"])

    def test_fill_down(self):
        col_map = build_column_map(HEADER)
        filled = fill_down_depths(ROWS[2:], col_map)
        assert filled[1][1:4] == ["주문", "장바구니", "삭제"]

    def test_new_value_resets_deeper_levels(self):
        col_map = build_column_map(HEADER)
        filled = fill_down_depths(ROWS[2:], col_map)
        # "결제" replaces depth_1, so depth_2 "삭제" must not carry over
        assert filled[3][1:4] == ["주문", "결제", ""]
        assert filled[4][1:4] == ["회원", "", ""]

    def test_separator_rows_dropped(self):
        _col_map, _header, mapped = map_rows(ROWS)
        assert [m["feature_name"] for m in mapped] == ["담기 버튼", "삭제 버튼", "카드 결제", "가입"]
        assert mapped[2]["depth_1"] == "결제"
        assert mapped[2]["depth_2"] is None

    def test_empty_sheet(self):
        with pytest.raises(BulkImportError):
            map_rows([])


class TestImportAPI:

    def _post(self, client, content, filename, **form):
        data = {"file": (io.BytesIO(content), filename), **form}
        return client.post("/api/v1/requirements/import", data=data, content_type="multipart/form-data")

    def test_csv_preview_writes_nothing(self, client, systems):
        res = self._post(client, _csv_bytes(ROWS), "plan.csv", preview="1")
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 4
        assert body["columns"]["feature_name"] == "기능명"
        assert body["rows"][0]["original_spec"] == "상품을 장바구니에 담는다"
        assert client.get("/api/v1/requirements").get_json()["total"] == 0

    def test_xlsx_import(self, client, systems):
        res = self._post(client, _xlsx_bytes(ROWS), "plan.xlsx", system_id=str(systems["쇼핑몰"].id))
        assert res.status_code == 201
        assert res.get_json()["created"] == 4

        items = client.get("/api/v1/requirements").get_json()["items"]
        assert [i["display_id"] for i in items] == [1, 2, 3, 4]
        assert items[1]["depth_0"] == "주문"
        assert {i["system_name"] for i in items} == {"쇼핑몰"}

    def test_import_requires_system(self, client, systems):
        res = self._post(client, _csv_bytes(ROWS), "plan.csv")
        assert res.status_code == 400
        assert res.get_json()["details"] == {"system_id": "required"}

    def test_unrecognised_columns(self, client, systems):
        res = self._post(client, _csv_bytes([["번호", "내용"], ["1", "x"]]), "plan.csv",
                         system_id=str(systems["쇼핑몰"].id))
        assert res.status_code == 400
        assert "Columns not recognised" in res.get_json()["error"]

    def test_unsupported_extension(self, client, systems):
        res = self._post(client, b"hello", "plan.txt", system_id=str(systems["쇼핑몰"].id))
        assert res.status_code == 400

    def test_file_required(self, client, systems):
        res = client.post("/api/v1/requirements/import", data={"system_id": "1"},
                          content_type="multipart/form-data")
        assert res.status_code == 400
