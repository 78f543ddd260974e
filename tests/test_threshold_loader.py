"""Tests de carga de umbrales desde JSON."""

import orjson
import pytest

from wq_ingest.domain.events import Parameter
from wq_ingest.thresholds.loader import DEFAULT_BANDS, load_thresholds, parse_threshold_config
from wq_ingest.thresholds.models import ThresholdConfigError


class TestThresholdLoader:

    def test_defaults_without_file(self):
        settings = load_thresholds(None)

        assert settings.bands == DEFAULT_BANDS
        assert settings.advisory_margin == pytest.approx(0.10)

    def test_file_overrides_single_parameter(self, tmp_path):
        path = tmp_path / "thresholds.json"
        path.write_bytes(orjson.dumps({
            "advisoryMargin": 0.05,
            "bands": {"tds": {"warningMax": 300, "criticalMax": 600}},
        }))

        settings = load_thresholds(str(path))

        assert settings.advisory_margin == pytest.approx(0.05)
        assert settings.bands[Parameter.TDS].warning_max == 300.0
        assert settings.bands[Parameter.TDS].critical_max == 600.0
        # el resto conserva defaults
        assert settings.bands[Parameter.PH] == DEFAULT_BANDS[Parameter.PH]

    def test_snake_case_fields_accepted(self):
        settings = parse_threshold_config({"bands": {"pH": {"warning_min": 6.8, "warning_max": 8.0}}})
        assert settings.bands[Parameter.PH].warning_min == 6.8

    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(ThresholdConfigError, match="not found"):
            load_thresholds(str(tmp_path / "nope.json"))

    def test_invalid_json_is_fatal(self, tmp_path):
        path = tmp_path / "thresholds.json"
        path.write_text("{not json")

        with pytest.raises(ThresholdConfigError, match="not valid JSON"):
            load_thresholds(str(path))

    @pytest.mark.parametrize(
        "data,match",
        [
            ({"bands": {"Chlorine": {"warningMax": 1}}}, "unknown parameter"),
            ({"bands": {"pH": {"warningMin": 8, "warningMax": 7}}}, "must be <="),
            ({"bands": {"pH": {"criticalMax": 8, "warningMax": 8.5}}}, "must be <="),
            ({"bands": {"pH": {"warnMax": 8}}}, "unknown field"),
            ({"bands": {"pH": {"warningMax": "high"}}}, "must be a number"),
            ({"bands": {"pH": {}}}, "no bounds"),
            ({"advisoryMargin": 1.5}, "advisoryMargin"),
        ],
    )
    def test_inconsistent_config_rejected(self, data, match):
        with pytest.raises(ThresholdConfigError, match=match):
            parse_threshold_config(data)
