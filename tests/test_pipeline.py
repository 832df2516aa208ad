"""Unit tests for mapframe.pipeline: load, cache reuse, retry and reset."""

from __future__ import annotations

import asyncio
import copy
import gc
from unittest.mock import patch

import pytest
import requests

from mapframe.cache import CacheManager
from mapframe.errors import NetworkError, SecurityError
from mapframe.extract import extract
from mapframe.pipeline import GeographyPipeline
from mapframe.projection import resolve_projection

URL = "https://cdn.example.com/regions.json"


def _load(pipeline: GeographyPipeline):
    return asyncio.run(pipeline.load())


@pytest.mark.unit
class TestInlineSources:
    """Parsed data handed straight to the pipeline."""

    def test_single_polygon_scenario(self, single_polygon_topology):
        result = _load(GeographyPipeline(single_polygon_topology))
        assert result.ok
        assert result.attempt == 1
        assert len(result.features) == 1
        geography = result.geography
        assert len(geography.prepared_features) == 1
        assert geography.prepared_features[0].key == "geo-0"
        assert geography.prepared_features[0].svg_path.startswith("M")
        assert geography.outline_path
        assert geography.borders_path is None
        assert result.warnings == ()

    def test_two_regions_have_borders(self, two_region_topology):
        result = _load(GeographyPipeline(two_region_topology))
        assert [item.id for item in result.geography.prepared_features] == ["L", "R"]
        assert result.geography.borders_path

    def test_feature_collection(self, feature_collection):
        result = _load(GeographyPipeline(feature_collection))
        assert len(result.geography.prepared_features) == 2
        assert result.geography.outline_path is None

    def test_empty_topology_warns(self):
        result = _load(GeographyPipeline({"type": "Topology", "objects": {}, "arcs": []}))
        assert result.ok
        assert result.geography.prepared_features == ()
        assert result.warnings == ("No features extracted from geography data",)

    def test_unrenderable_features_warn(self, feature_collection):
        data = copy.deepcopy(feature_collection)
        data["features"][1]["geometry"] = None
        result = _load(GeographyPipeline(data))
        assert len(result.features) == 2
        assert len(result.geography.prepared_features) == 1
        assert result.warnings == ("1 feature(s) have no renderable path",)

    def test_parse_filters_features(self, two_region_topology):
        pipeline = GeographyPipeline(
            two_region_topology,
            parse=lambda features: [f for f in features if f["id"] == "L"],
        )
        result = _load(pipeline)
        assert [item.id for item in result.geography.prepared_features] == ["L"]
        assert result.geography.prepared_features[0].key == "geo-0"


@pytest.mark.unit
class TestCaching:
    """Derived results are reused across loads and pipelines."""

    def test_repeat_load_reuses_extraction_and_paths(self, single_polygon_topology):
        pipeline = GeographyPipeline(single_polygon_topology)
        with patch("mapframe.pipeline.extract", wraps=extract) as spy:
            first = _load(pipeline)
            second = _load(pipeline)
        assert spy.call_count == 1
        assert second.geography.prepared_features[0] is first.geography.prepared_features[0]

    def test_equal_content_shares_cache_across_objects(self, single_polygon_topology):
        cache = CacheManager()
        with patch("mapframe.pipeline.extract", wraps=extract) as spy:
            _load(GeographyPipeline(single_polygon_topology, cache=cache))
            _load(GeographyPipeline(copy.deepcopy(single_polygon_topology), cache=cache))
        assert spy.call_count == 1
        assert cache.features.hits == 1

    def test_new_projection_reprepares_without_reextracting(self, single_polygon_topology):
        cache = CacheManager()
        with patch("mapframe.pipeline.extract", wraps=extract) as spy:
            first = _load(GeographyPipeline(single_polygon_topology, cache=cache))
            second = _load(
                GeographyPipeline(
                    single_polygon_topology,
                    cache=cache,
                    projection=resolve_projection("geoMercator"),
                )
            )
        assert spy.call_count == 1
        assert len(cache.prepared) == 2
        assert first.geography.prepared_features[0].svg_path != second.geography.prepared_features[0].svg_path

    def test_new_parse_function_reextracts(self, two_region_topology):
        cache = CacheManager()
        with patch("mapframe.pipeline.extract", wraps=extract) as spy:
            _load(GeographyPipeline(two_region_topology, cache=cache))
            _load(GeographyPipeline(two_region_topology, cache=cache, parse=lambda f: f[:1]))
        assert spy.call_count == 2

    def test_closures_from_one_factory_never_share_results(self, feature_collection):
        def only(feature_id):
            return lambda features: [f for f in features if f["id"] == feature_id]

        data = copy.deepcopy(feature_collection)
        data["features"] = [
            {"type": "Feature", "id": str(index), "properties": {}, "geometry": {"type": "Point", "coordinates": [index, 0]}}
            for index in range(12)
        ]
        cache = CacheManager()
        for index in range(12):
            pipeline = GeographyPipeline(data, parse=only(str(index)), cache=cache)
            result = _load(pipeline)
            assert [item.id for item in result.geography.prepared_features] == [str(index)]
            del pipeline, result
            gc.collect()

    def test_custom_projections_never_share_paths(self, single_polygon_topology):
        def shifted(offset):
            return lambda coordinates: (coordinates[0] + offset, coordinates[1])

        cache = CacheManager()
        paths = []
        for offset in (0, 100, 200):
            pipeline = GeographyPipeline(
                single_polygon_topology,
                projection=resolve_projection(shifted(offset), 400, 400),
                cache=cache,
            )
            paths.append(_load(pipeline).geography.prepared_features[0].svg_path)
            del pipeline
            gc.collect()
        assert len(set(paths)) == 3


@pytest.mark.unit
class TestUrlSources:
    """Fetched sources, failures, retry and reset."""

    def test_fetched_topology(self, fetcher, session, response_factory, single_polygon_topology):
        session.get.return_value = response_factory(single_polygon_topology)
        result = _load(GeographyPipeline(URL, fetcher=fetcher))
        assert result.ok
        assert len(result.geography.prepared_features) == 1

    def test_rejected_url_is_returned_not_raised(self, fetcher, session):
        result = _load(GeographyPipeline("http://cdn.example.com/regions.json", fetcher=fetcher))
        assert not result.ok
        assert isinstance(result.error, SecurityError)
        assert result.geography is None
        session.get.assert_not_called()

    def test_failure_then_retry(self, fetcher, session, response_factory, single_polygon_topology):
        session.get.side_effect = [
            requests.ConnectionError("down"),
            response_factory(single_polygon_topology),
        ]
        pipeline = GeographyPipeline(URL, fetcher=fetcher)

        async def scenario():
            failed = await pipeline.load()
            again = await pipeline.load()
            recovered = await pipeline.retry()
            return failed, again, recovered

        failed, again, recovered = asyncio.run(scenario())
        assert isinstance(failed.error, NetworkError)
        assert failed.attempt == 1
        assert again.error is failed.error
        assert recovered.ok
        assert recovered.attempt == 2
        assert pipeline.last_result is recovered
        assert session.get.call_count == 2

    def test_reset_clears_attempt_and_request(self, fetcher, session):
        session.get.side_effect = requests.ConnectionError("down")
        pipeline = GeographyPipeline(URL, fetcher=fetcher)

        async def scenario():
            await pipeline.load()
            await pipeline.retry()

        asyncio.run(scenario())
        assert pipeline.attempt == 2
        pipeline.reset()
        assert pipeline.attempt == 1
        assert pipeline.last_result is None
        assert fetcher.cache.request(URL) is None
