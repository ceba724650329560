from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pytest


SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "preview_allocation.py"


def _load_script():
    loader_spec = importlib.util.spec_from_file_location("preview_allocation", SCRIPT)
    mod = importlib.util.module_from_spec(loader_spec)
    assert loader_spec.loader is not None
    loader_spec.loader.exec_module(mod)
    return mod


EXPORT = [
    {
        "id": "ADM003",
        "name": "Milhouse Van Houten",
        "fatherName": "Kirk Van Houten",
        "motherName": "Luann Van Houten",
        "dob": "2015-06-01",
        "class": 4,
        "previousPending": [{"year": "2024-25", "amount": 5000, "description": "2024-25 Balance"}],
        "currentYearFee": 20000,
        "paidAmount": 0,
    },
    {
        "id": "ADM002",
        "name": "Lisa Simpson",
        "class": "2",
        "currentYearFee": 20000,
        "paidAmount": 20000,
    },
]


@pytest.fixture
def export_file(tmp_path: Path) -> Path:
    p = tmp_path / "students.json"
    p.write_text(json.dumps(EXPORT), encoding="utf-8")
    return p


def test_convert_maps_camel_case_fields(export_file: Path, tmp_path: Path) -> None:
    out = tmp_path / "out.json"
    assert _load_script().main(["convert", "--file", str(export_file), "--out", str(out)]) == 0

    students = json.loads(out.read_text(encoding="utf-8"))
    assert [s["id"] for s in students] == ["ADM003", "ADM002"]
    milhouse = students[0]
    assert milhouse["father_name"] == "Kirk Van Houten"
    assert milhouse["mother_name"] == "Luann Van Houten"
    assert milhouse["dob"] == "2015-06-01"
    assert milhouse["class_name"] == "4"
    assert milhouse["previous_pending"] == [{"year": "2024-25", "amount": "5000.00", "description": "2024-25 Balance"}]
    assert milhouse["current_year_fee"] == "20000.00"
    assert students[1]["previous_pending"] == []
    assert students[1]["dob"] is None


def test_allocate_previews_oldest_first(export_file: Path, capsys) -> None:
    rc = _load_script().main(["allocate", "--file", str(export_file), "--student", "ADM003", "--amount", "6,000"])
    assert rc == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["allocations"] == [
        {"year": "2024-25", "amount": "5000.00"},
        {"year": "2025-26", "amount": "1000.00"},
    ]
    assert payload["outstanding_before"] == "25000.00"
    assert payload["outstanding_after"] == "19000.00"


def test_allocate_rejects_overpayment_and_unknown_student(export_file: Path) -> None:
    script = _load_script()
    with pytest.raises(SystemExit) as exc:
        script.main(["allocate", "--file", str(export_file), "--student", "ADM002", "--amount", "1"])
    assert "exceeds outstanding" in str(exc.value.code)

    with pytest.raises(SystemExit) as exc:
        script.main(["allocate", "--file", str(export_file), "--student", "NOPE", "--amount", "1"])
    assert "Student not found: NOPE" in str(exc.value.code)
