from datetime import datetime, timezone

import pytest

from inference.correction_store import (
    CorrectionDataPoint,
    CorrectionSource,
    InMemoryCorrectionStore,
    RecommendedAction,
    RegionCorrectionModel,
    SQLiteCorrectionStore,
    TrendDirection,
    parse_timestamp,
)

NOW = datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc)


def _model(region_key, factor=1.1):
    point = CorrectionDataPoint(
        id=f"{region_key}-1",
        region_key=region_key,
        reference_area_sqft=2000.0,
        ground_truth_area_sqft=2000.0 * factor,
        correction_factor=factor,
        source=CorrectionSource.GAF_REPORT,
        timestamp=NOW,
        confidence=90.0,
        building_type="house",
    )
    return RegionCorrectionModel(
        region_key=region_key,
        correction_factor=factor,
        sample_count=1,
        weighted_confidence=90.0,
        trend_direction=TrendDirection.STABLE,
        recommended_action=RecommendedAction.NEEDS_MORE_DATA,
        last_updated=NOW,
        data_points=[point],
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryCorrectionStore()
    return SQLiteCorrectionStore(str(tmp_path / "calibration.db"))


def test_put_and_get(store):
    store.put(_model("02134"))
    assert store.get("02134") == _model("02134")
    assert store.get("99999") is None


def test_put_replaces(store):
    store.put(_model("02134", 1.1))
    store.put(_model("02134", 1.3))
    assert store.get("02134").correction_factor == 1.3
    assert store.keys() == ["02134"]


def test_keys_sorted_and_delete(store):
    for key in ("10001", "02134", "60601"):
        store.put(_model(key))
    assert store.keys() == ["02134", "10001", "60601"]

    store.delete("10001")
    store.delete("not-there")
    assert store.keys() == ["02134", "60601"]


def test_snapshot_and_restore(store):
    store.put(_model("02134"))
    store.put(_model("10001"))
    snapshot = store.snapshot()
    assert list(snapshot) == ["02134", "10001"]

    store.restore({"60601": _model("60601")})
    assert store.keys() == ["60601"]

    store.clear()
    assert store.keys() == []


def test_in_memory_returns_copies():
    store = InMemoryCorrectionStore()
    store.put(_model("02134"))

    fetched = store.get("02134")
    fetched.data_points.clear()

    assert len(store.get("02134").data_points) == 1
    assert len(store) == 1


def test_sqlite_persists_across_instances(tmp_path):
    path = str(tmp_path / "calibration.db")
    SQLiteCorrectionStore(path).put(_model("02134"))
    assert SQLiteCorrectionStore(path).get("02134") == _model("02134")


def test_model_dict_round_trip():
    model = _model("02134")
    data = model.to_dict()

    assert data["trend_direction"] == "stable"
    assert data["data_points"][0]["source"] == "gaf-report"
    assert data["last_updated"] == "2024-06-01T12:30:00+00:00"
    assert RegionCorrectionModel.from_dict(data) == model


def test_parse_timestamp():
    assert parse_timestamp("2024-06-01T12:30:00Z") == NOW
    assert parse_timestamp("2024-06-01T12:30:00") == NOW
    assert parse_timestamp("2024-06-01T14:30:00+02:00") == NOW
