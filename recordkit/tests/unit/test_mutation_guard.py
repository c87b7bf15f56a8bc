from __future__ import annotations

from datetime import date, datetime

import pytest

from recordkit.core.errors import ValidationFailure
from recordkit.domain.models import FileHits
from recordkit.tests.utils.records import DailyTotals


def test_defaults_are_set_without_validation() -> None:
    hits = FileHits()
    assert hits.file_id is None
    assert hits.date is None
    assert hits.hits == 0
    assert hits.id is None
    assert not hits.is_valid()


def test_rejected_write_keeps_prior_value() -> None:
    hits = FileHits(file_id=1, date=date(2024, 1, 1), hits=3)
    with pytest.raises(ValidationFailure) as excinfo:
        hits.hits = -1
    assert excinfo.value.fields == ["hits"]
    assert hits.hits == 3


def test_set_field_is_the_same_entry_point() -> None:
    hits = FileHits(file_id=1, date=date(2024, 1, 1))
    hits.set_field("hits", 9)
    assert hits.hits == 9
    with pytest.raises(ValidationFailure):
        hits.set_field("hits", "lots")
    assert hits.hits == 9


def test_constructor_properties_go_through_the_guard() -> None:
    with pytest.raises(ValidationFailure):
        FileHits(file_id=1, date=date(2024, 1, 1), hits=-5)


def test_transformer_runs_before_validation() -> None:
    hits = FileHits(file_id=1, date=datetime(2024, 3, 4, 17, 30), hits=1)
    assert hits.date == date(2024, 3, 4)
    hits.date = "2024-05-06T08:00:00"
    assert hits.date == date(2024, 5, 6)


def test_transformer_output_is_still_validated() -> None:
    totals = DailyTotals(date=date(2024, 1, 1), label="  short  ")
    assert totals.label == "short"
    with pytest.raises(ValidationFailure):
        totals.label = "  " + "x" * 40 + "  "
    assert totals.label == "short"


def test_undeclared_attributes_bypass_validation() -> None:
    hits = FileHits(file_id=1, date=date(2024, 1, 1))
    hits.note = -1
    hits.id = 42
    assert hits.note == -1
    assert hits.id == 42
    assert "note" not in hits.serialize()


def test_serialize_projects_declared_columns_only() -> None:
    hits = FileHits(file_id=1, date=date(2024, 1, 1), hits=2, source="import")
    assert hits.source == "import"
    assert hits.serialize() == {"file_id": 1, "date": date(2024, 1, 1), "hits": 2}


def test_unique_criteria_strips_falsy_values() -> None:
    assert FileHits(date=date(2024, 1, 1)).unique_criteria == {"date": date(2024, 1, 1)}
    assert FileHits(file_id=7, date=date(2024, 1, 1)).unique_criteria == {
        "file_id": 7,
        "date": date(2024, 1, 1),
    }
    assert FileHits().unique_criteria == {}


@pytest.mark.parametrize("value", ["2024-01-01garbage", "2024-13-01", "yesterday"])
def test_malformed_date_strings_are_rejected(value) -> None:
    hits = FileHits(file_id=1, date=date(2024, 1, 1))
    with pytest.raises(ValidationFailure):
        hits.date = value
    assert hits.date == date(2024, 1, 1)


def test_plain_iso_date_strings_are_accepted() -> None:
    assert FileHits(date="2024-02-29").date == date(2024, 2, 29)
