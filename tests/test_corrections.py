import logging
from datetime import date, datetime, timezone

import pytest

from models.telemetry import Correction, Reading
from services.corrections import (
    ExpressionError,
    apply_corrections,
    compile_expression,
    corrections_for,
    evaluate_expression,
)


def _raw(**metrics) -> Reading:
    return Reading(
        device="device",
        date=date(2023, 11, 19),
        reading_type="zigbee_temp",
        sensor_id="sensor",
        processed=False,
        time=datetime(2023, 11, 19, 18, 44, 19, tzinfo=timezone.utc),
        **metrics,
    )


def test_arithmetic_over_named_fields() -> None:
    assert evaluate_expression("temperature * 2 - 1", {"temperature": 10}) == 19
    assert evaluate_expression("2 ^ 3", {}) == 8.0
    assert evaluate_expression("max(a, b) + abs(c)", {"a": 1, "b": 4, "c": -2}) == 6
    assert evaluate_expression("a if a > 0 else 0", {"a": -3}) == 0


def test_unknown_fields_yield_null() -> None:
    assert evaluate_expression("missing + 1", {}) is None
    assert evaluate_expression("temperature + 1", {"temperature": None}) is None


def test_arithmetic_errors_yield_null() -> None:
    assert evaluate_expression("1 / zero", {"zero": 0}) is None
    assert evaluate_expression("sqrt(x)", {"x": -1}) is None


@pytest.mark.parametrize(
    "expression",
    ["temperature +", "__import__('os')", "temperature.real", "'text'", "[1, 2]"],
)
def test_unsupported_syntax_is_rejected(expression) -> None:
    with pytest.raises(ExpressionError):
        compile_expression(expression)


def test_correction_yields_processed_copy() -> None:
    raw = _raw(voltage=10.2, temperature=36.1, humidity=10.1)
    correction = Correction(
        device="device", reading_type="zigbee_temp", metric="temperature",
        expression="temperature + 1",
    )

    corrected = apply_corrections(raw, [correction])

    assert corrected.processed is True
    assert corrected.temperature == pytest.approx(37.1)
    assert corrected.humidity == 10.1
    assert raw.processed is False
    assert raw.temperature == 36.1


def test_corrections_read_raw_values_only() -> None:
    raw = _raw(temperature=10.0, humidity=50.0)
    corrections = [
        Correction(device="device", reading_type="zigbee_temp", metric="temperature",
                   expression="temperature + 5"),
        Correction(device="device", reading_type="zigbee_temp", metric="humidity",
                   expression="temperature * 2"),
    ]

    corrected = apply_corrections(raw, corrections)

    assert corrected.temperature == 15.0
    assert corrected.humidity == 20.0


def test_invalid_expression_nulls_metric(caplog) -> None:
    raw = _raw(temperature=10.0)
    correction = Correction(
        device="device", reading_type="zigbee_temp", metric="temperature", expression="temperature +"
    )

    with caplog.at_level(logging.WARNING):
        corrected = apply_corrections(raw, [correction])

    assert corrected.temperature is None
    assert any("Invalid correction expression" in r.getMessage() for r in caplog.records)


def test_result_that_does_not_fit_its_metric_is_nulled(caplog) -> None:
    raw = _raw(contact=True, battery=90.0)
    corrections = [
        Correction(device="device", reading_type="zigbee_temp", metric="contact",
                   expression="contact + 1"),
        Correction(device="device", reading_type="zigbee_temp", metric="battery",
                   expression="battery - 10"),
    ]

    with caplog.at_level(logging.WARNING):
        corrected = apply_corrections(raw, corrections)

    assert corrected.contact is None
    assert corrected.battery == 80.0
    assert any(getattr(r, "metric", None) == "contact" for r in caplog.records)


def test_unknown_metric_is_skipped(caplog) -> None:
    raw = _raw(temperature=10.0)
    correction = Correction(
        device="device", reading_type="zigbee_temp", metric="colour", expression="1"
    )

    with caplog.at_level(logging.WARNING):
        corrected = apply_corrections(raw, [correction])

    assert corrected.temperature == 10.0
    assert "colour" not in corrected.model_dump()
    assert any(getattr(r, "metric", None) == "colour" for r in caplog.records)


def test_corrections_for_filters_by_sensor_type() -> None:
    raw = _raw(temperature=10.0)
    matching = Correction(device="device", reading_type="zigbee_temp", metric="temperature",
                          expression="temperature")
    other_type = Correction(device="device", reading_type="zigbee_power", metric="power",
                            expression="power")
    other_device = Correction(device="other", reading_type="zigbee_temp", metric="temperature",
                              expression="temperature")

    assert corrections_for(raw, [matching, other_type, other_device]) == [matching]
