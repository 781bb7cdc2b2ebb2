"""Tests for the fixture-backed spatial query service."""

from __future__ import annotations

import json

import pytest

from civicmap.core.errors import InvalidInput, NotFound
from civicmap.gis.models import BBox, ProximityKind
from civicmap.gis.service import SpatialQueryService

from tests.conftest import DOWNTOWN, QUEEN_LAT, QUEEN_LON


def _ids(collection, key):
    return [f["properties"][key] for f in collection.features]


class TestParcels:
    def test_satisfies_protocol(self, mock_service):
        assert isinstance(mock_service, SpatialQueryService)

    async def test_below_min_zoom_is_empty(self, mock_service):
        fc = await mock_service.query_parcels(DOWNTOWN, 9.5)
        assert fc.features == []

    async def test_ordered_by_area_descending(self, mock_service):
        fc = await mock_service.query_parcels(DOWNTOWN, 14)
        assert _ids(fc, "parcel_id") == [1003, 1002, 1001, 1005, 1004]

    async def test_bbox_filters(self, mock_service):
        fc = await mock_service.query_parcels(BBox.of(-79.3720, 43.6590, -79.3680, 43.6610), 14)
        assert _ids(fc, "parcel_id") == [1004]

    async def test_simplification_coarser_at_low_zoom(self, mock_service):
        bbox = BBox.of(-79.3810, 43.6535, -79.3770, 43.6555)
        coarse = await mock_service.query_parcels(bbox, 12)
        fine = await mock_service.query_parcels(bbox, 18)
        coarse_ring = coarse.features[0]["geometry"]["coordinates"][0]
        fine_ring = fine.features[0]["geometry"]["coordinates"][0]
        assert len(coarse_ring) < len(fine_ring)


class TestAddresses:
    async def test_parcel_addresses(self, mock_service):
        fc = await mock_service.query_parcel_addresses(1001)
        assert sorted(_ids(fc, "address_point_id")) == [5001, 5002]
        labels = {f["properties"]["full_address"] for f in fc.features}
        assert labels == {"100 Queen St W", "102 Queen St W"}

    async def test_parcel_addresses_derives_label(self, mock_service):
        fc = await mock_service.query_parcel_addresses(1003)
        assert fc.features[0]["properties"]["full_address"] == "12 Elm St"

    async def test_unknown_parcel_is_empty(self, mock_service):
        fc = await mock_service.query_parcel_addresses(424242)
        assert fc.features == []

    async def test_invalid_parcel_id(self, mock_service):
        with pytest.raises(InvalidInput, match="Invalid parcel ID"):
            await mock_service.query_parcel_addresses(0)

    async def test_requires_one_mode(self, mock_service):
        with pytest.raises(InvalidInput, match="Either parcel_id or bbox is required"):
            await mock_service.query_addresses()

    async def test_bbox_mode_zoom_guard(self, mock_service):
        fc = await mock_service.query_addresses(bbox=DOWNTOWN, zoom=8)
        assert fc.features == []

    async def test_bbox_mode(self, mock_service):
        fc = await mock_service.query_addresses(bbox=DOWNTOWN, zoom=14)
        assert len(fc) == 6

    async def test_parcel_mode_ignores_zoom(self, mock_service):
        fc = await mock_service.query_addresses(parcel_id=1002, zoom=3)
        assert _ids(fc, "address_point_id") == [5003]

    async def test_parcel_wins_over_bbox(self, mock_service):
        fc = await mock_service.query_addresses(parcel_id=1004, bbox=DOWNTOWN, zoom=14)
        assert _ids(fc, "address_point_id") == [5005]

    async def test_parcel_for_address(self, mock_service):
        assert await mock_service.query_parcel_for_address(5003) == 1002

    async def test_address_outside_parcels(self, mock_service):
        with pytest.raises(NotFound, match="No parcel found for this address"):
            await mock_service.query_parcel_for_address(5006)


class TestSearch:
    async def test_case_insensitive_substring(self, mock_service):
        results = await mock_service.search_addresses("  QUEEN st ")
        assert [r.id for r in results] == [5001, 5002]
        assert results[0].label == "100 Queen St W"
        assert (results[0].lon, results[0].lat) == (QUEEN_LON, QUEEN_LAT)

    async def test_limit(self, mock_service):
        results = await mock_service.search_addresses("st", limit=2)
        assert len(results) == 2

    async def test_limit_clamped_to_at_least_one(self, mock_service):
        results = await mock_service.search_addresses("st", limit=0)
        assert len(results) == 1

    @pytest.mark.parametrize("q", [None, "", "   "])
    async def test_blank_query(self, mock_service, q):
        with pytest.raises(InvalidInput, match=r"q \(query\) parameter is required"):
            await mock_service.search_addresses(q)


class TestProximity:
    async def test_nearby_sorted_by_distance(self, mock_service):
        results = await mock_service.query_proximity(QUEEN_LON, QUEEN_LAT)
        distances = [r.distance_m for r in results]
        assert distances == sorted(distances)
        assert all(d <= 2000 for d in distances)
        assert {r.type for r in results} == set(ProximityKind)
        assert results[0].name == "Nathan Phillips Square"

    async def test_kinds_filter(self, mock_service):
        results = await mock_service.query_proximity(QUEEN_LON, QUEEN_LAT, kinds=[ProximityKind.TRANSIT])
        assert {r.name for r in results} == {"Queen", "King St W at Bay St"}

    async def test_smaller_radius(self, mock_service):
        results = await mock_service.query_proximity(QUEEN_LON, QUEEN_LAT, radius_m=300)
        assert [r.name for r in results] == ["Nathan Phillips Square", "City Hall"]

    async def test_zero_coordinates_are_valid(self, mock_service):
        assert await mock_service.query_proximity(0.0, 0.0) == []

    @pytest.mark.parametrize("lon,lat", [(None, 43.65), (float("nan"), 43.65), (-79.38, float("inf"))])
    async def test_rejects_bad_coordinates(self, mock_service, lon, lat):
        with pytest.raises(InvalidInput):
            await mock_service.query_proximity(lon, lat)

    async def test_schools_within_2km(self, mock_service):
        results = await mock_service.query_within(QUEEN_LON, QUEEN_LAT, ProximityKind.SCHOOL, 2000)
        assert [r.name for r in results] == [
            "Downtown Alternative School",
            "Market Lane Public School",
            "Church Street Public School",
            "Ryerson Community School",
        ]

    async def test_libraries_within_2km(self, mock_service):
        results = await mock_service.query_within(QUEEN_LON, QUEEN_LAT, ProximityKind.LIBRARY, 2000)
        assert [r.name for r in results] == ["City Hall", "St. Lawrence"]

    async def test_nearest_schools_ignore_radius(self, mock_service):
        results = await mock_service.query_nearest(QUEEN_LON, QUEEN_LAT, ProximityKind.SCHOOL, 5)
        assert len(results) == 5
        assert results[-1].name == "Jesse Ketchum Public School"
        assert results[-1].distance_m > 2000
        assert "Eastdale Collegiate" not in {r.name for r in results}

    async def test_snap_to_road(self, mock_service):
        [snap] = await mock_service.snap_to_road(QUEEN_LON, QUEEN_LAT)
        assert snap.street == "Queen St W"
        assert 0 < snap.dist_m < 250
        assert json.loads(snap.snap_geojson)["type"] == "Point"
        line = json.loads(snap.offset_line_geojson)
        assert line["coordinates"][-1] == [QUEEN_LON, QUEEN_LAT]

    async def test_health(self, mock_service):
        status = await mock_service.health()
        assert status.healthy
