"""Tests for storage and the pipeline manager."""

import json
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.pipeline.config import PipelineConfig
from data.pipeline.errors import NoSourceData, PersistenceMissing
from data.pipeline.manager import DataPipeline, FetchMode
from data.pipeline.storage import DataStorage

from conftest import make_candle, make_series, utc


class RangeAdapter:
    """Fake adapter producing one candle per day of the requested range."""

    def __init__(self, name, close=100.0, fail=False):
        self._name = name
        self.close = close
        self.fail = fail
        self.calls = []

    @property
    def name(self):
        return self._name

    def fetch(self, start_time, end_time):
        self.calls.append((start_time, end_time))
        if self.fail:
            raise RuntimeError(f"{self._name} down")
        day = start_time.date()
        candles = []
        while day <= end_time.date():
            candles.append(make_candle(day, close=self.close))
            day += timedelta(days=1)
        return candles


def make_pipeline(storage_config, adapters, history_start="2024-01-01"):
    config = PipelineConfig(storage=storage_config, history_start=history_start)
    return DataPipeline(config=config, adapters=adapters)


class TestDataStorage:
    """Test cases for DataStorage."""

    def test_missing_file(self, storage_config):
        """Loading before anything is saved raises PersistenceMissing."""
        storage = DataStorage(storage_config)

        with pytest.raises(PersistenceMissing):
            storage.load_series()
        with pytest.raises(PersistenceMissing):
            storage.latest_date()

    def test_empty_file_counts_as_missing(self, storage_config):
        """An empty JSON list is treated like a missing file."""
        storage = DataStorage(storage_config)
        storage.save_series([])

        with pytest.raises(PersistenceMissing):
            storage.load_series()

    def test_save_and_load(self, storage_config):
        """A saved series loads back equal, formatted with indent=2."""
        storage = DataStorage(storage_config)
        series = make_series([100, 101, 102])

        path = storage.save_series(series)

        assert storage.load_series() == series
        assert storage.latest_date() == series[-1].date
        assert path.read_text(encoding="utf-8").startswith("[\n  {")

    def test_raw_filename(self, storage_config):
        """Raw snapshots are named by exchange and date range."""
        storage = DataStorage(storage_config)
        day = date(2024, 1, 1)

        path = storage.save_raw("Binance", [make_candle(day)], day, date(2024, 1, 31))

        assert path.name == "btc_price_binance_20240101_20240131.json"
        assert json.loads(path.read_text())[0]["date"] == "2024-01-01"


class TestDataPipeline:
    """Test cases for DataPipeline.run()."""

    def test_full_run_writes_outputs(self, storage_config):
        """A full run persists the series, anomalies and analysis."""
        adapters = [RangeAdapter("Binance", 100), RangeAdapter("OKX", 100.2)]
        pipeline = make_pipeline(storage_config, adapters)

        result = pipeline.run(FetchMode.FULL, end_time=utc(date(2024, 1, 10)))

        data_dir = Path(storage_config.data_dir)
        assert result.success
        assert result.series_length == 10
        assert result.records_by_source == {"Binance": 10, "OKX": 10}
        assert (data_dir / "btc_price_validated.json").exists()
        assert (data_dir / "btc_price_anomalies.json").exists()
        assert (data_dir / "btc_price_analysis.json").exists()
        assert (data_dir / "btc_price_okx_20240101_20240110.json").exists()
        assert adapters[0].calls[0][0] == utc(date(2024, 1, 1))

    def test_increment_starts_after_last_day(self, storage_config):
        """Increment mode fetches from the day after the persisted last date."""
        DataStorage(storage_config).save_series(make_series([100] * 5, start=date(2024, 1, 1)))
        adapter = RangeAdapter("Binance", 101)
        pipeline = make_pipeline(storage_config, [adapter])

        result = pipeline.run(FetchMode.INCREMENT, end_time=utc(date(2024, 1, 8)))

        assert adapter.calls[0][0] == utc(date(2024, 1, 6))
        assert result.series_length == 8
        series = DataStorage(storage_config).load_series()
        assert series[-1].date == date(2024, 1, 8)
        assert series[0].get("Binance").close == 100

    def test_increment_without_data_falls_back_to_full(self, storage_config):
        """No persisted series means the full-history start is used."""
        adapter = RangeAdapter("Binance")
        pipeline = make_pipeline(storage_config, [adapter], history_start="2024-02-01")

        pipeline.run(FetchMode.INCREMENT, end_time=utc(date(2024, 2, 3)))

        assert adapter.calls[0][0] == utc(date(2024, 2, 1))

    def test_increment_up_to_date(self, storage_config):
        """Nothing is fetched when the series already covers the end date."""
        DataStorage(storage_config).save_series(make_series([100] * 3, start=date(2024, 1, 1)))
        adapter = RangeAdapter("Binance")

        result = make_pipeline(storage_config, [adapter]).run(
            FetchMode.INCREMENT, end_time=utc(date(2024, 1, 3))
        )

        assert result.success
        assert adapter.calls == []

    def test_all_sources_empty_raises(self, storage_config):
        """NoSourceData when every adapter contributes nothing."""
        adapters = [RangeAdapter("Binance", fail=True), RangeAdapter("OKX", fail=True)]
        pipeline = make_pipeline(storage_config, adapters)

        with pytest.raises(NoSourceData) as exc_info:
            pipeline.run(FetchMode.FULL, end_time=utc(date(2024, 1, 5)))

        assert "Binance" in str(exc_info.value)
        assert not (Path(storage_config.data_dir) / "btc_price_validated.json").exists()

    def test_one_source_down_still_succeeds(self, storage_config):
        """A single failing source is reported but does not fail the run."""
        adapters = [RangeAdapter("Binance"), RangeAdapter("Huobi", fail=True)]

        result = make_pipeline(storage_config, adapters).run(
            FetchMode.FULL, end_time=utc(date(2024, 1, 3))
        )

        assert result.success
        assert result.records_by_source["Huobi"] == 0
        assert len(result.errors) == 1
        assert result.to_dict()["stats"]["validDays"] == 3

    def test_analysis_skips_invalid_days(self, storage_config):
        """Days the validator rejects do not feed the analysis extremes."""

        class BrokenDayAdapter(RangeAdapter):
            def fetch(self, start_time, end_time):
                candles = super().fetch(start_time, end_time)
                broken = candles[1]
                # close above high: ohlc_inconsistent
                candles[1] = make_candle(broken.date, close=1_000_000.0, high=110.0, low=90.0, open_=100.0)
                return candles

        result = make_pipeline(storage_config, [BrokenDayAdapter("Binance")]).run(
            FetchMode.FULL, end_time=utc(date(2024, 1, 3))
        )

        assert result.analysis["price"]["highest"]["value"] == 100.0
        assert result.analysis["volume"]["total"]["Binance"] == 20.0
        assert result.validation.anomalies.counts()["dataMissing"] == 1
