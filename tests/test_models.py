"""Tests for GIS models and the zoom policy."""

from __future__ import annotations

import json
import math

import pytest

from civicmap.core.errors import InvalidInput
from civicmap.gis.models import (
    AddressFeature,
    BBox,
    CrossReference,
    FeatureCollection,
    ParcelFeature,
    ProximityKind,
    ProximityResult,
    Viewport,
)
from civicmap.gis.zoom import clamp_zoom, tolerance_for_zoom, zoom_permits_query


class TestBBox:
    def test_parse(self):
        bbox = BBox.parse("-79.40,43.64,-79.36,43.68")
        assert bbox.as_list() == [-79.40, 43.64, -79.36, 43.68]

    @pytest.mark.parametrize(
        "raw",
        [None, "", "1,2,3", "1,2,3,4,5", "a,b,c,d", "1,2,nan,4", "1,2,inf,4"],
    )
    def test_parse_rejects_malformed(self, raw):
        with pytest.raises(InvalidInput) as exc_info:
            BBox.parse(raw)
        assert exc_info.value.message == "bbox=minX,minY,maxX,maxY required"

    def test_rejects_inverted_bounds(self):
        with pytest.raises(InvalidInput):
            BBox.of(-79.36, 43.64, -79.40, 43.68)
        with pytest.raises(InvalidInput):
            BBox.of(-79.40, 43.68, -79.36, 43.64)

    def test_rejects_degenerate(self):
        with pytest.raises(InvalidInput):
            BBox.of(-79.40, 43.64, -79.40, 43.68)

    def test_query_form_round_trips(self):
        bbox = BBox.of(-79.4, 43.64, -79.36, 43.68)
        assert BBox.parse(bbox.to_query()) == bbox


class TestZoom:
    def test_tolerance_tiers(self):
        assert tolerance_for_zoom(5) == 0.0003
        assert tolerance_for_zoom(10) == 0.0001
        assert tolerance_for_zoom(12) == 0.00005
        assert tolerance_for_zoom(14) == 0.00002
        assert tolerance_for_zoom(18) == 0.000005

    def test_breakpoints_take_finer_tier(self):
        assert tolerance_for_zoom(9) == 0.0001
        assert tolerance_for_zoom(11) == 0.00005
        assert tolerance_for_zoom(13) == 0.00002
        assert tolerance_for_zoom(15) == 0.000005

    def test_tolerance_never_increases(self):
        zooms = [z / 4 for z in range(0, 89)]
        values = [tolerance_for_zoom(z) for z in zooms]
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_clamp_zoom(self):
        assert clamp_zoom(None) == 12
        assert clamp_zoom("abc") == 12
        assert clamp_zoom(math.nan) == 12
        assert clamp_zoom("-3") == 0
        assert clamp_zoom(40) == 22
        assert clamp_zoom("14.5") == 14.5

    def test_query_guard(self):
        assert not zoom_permits_query(9.99)
        assert zoom_permits_query(10)
        assert zoom_permits_query(8, min_zoom=8)

    def test_viewport_clamps_zoom(self):
        vp = Viewport(bbox=BBox.of(0, 0, 1, 1), zoom=30)
        assert vp.zoom == 22


class TestFeatures:
    def test_parcel_geojson(self):
        feature = ParcelFeature(parcel_id=7, f_type="Residential").to_geojson()
        assert feature["type"] == "Feature"
        assert feature["properties"] == {"parcel_id": 7, "f_type": "Residential"}

    def test_address_full_address_fallback(self):
        address = AddressFeature(address_point_id=1, civic_number=12, street_name="Elm St")
        assert address.civic_number == "12"
        assert address.full_address == "12 Elm St"

    def test_address_keeps_stored_full_address(self):
        address = AddressFeature(
            address_point_id=1, civic_number="12", street_name="Elm St", full_address="12A Elm St"
        )
        assert address.full_address == "12A Elm St"

    def test_address_without_parts(self):
        address = AddressFeature(address_point_id=1, civic_number="12")
        assert address.full_address is None

    def test_address_lng_lat(self):
        address = AddressFeature(
            address_point_id=1, geometry={"type": "Point", "coordinates": [-79.38, 43.65]}
        )
        assert address.lng_lat == (-79.38, 43.65)
        assert AddressFeature(address_point_id=2).lng_lat is None

    def test_address_from_geojson(self):
        original = AddressFeature(
            address_point_id=5,
            civic_number="100",
            street_name="Queen St W",
            geometry={"type": "Point", "coordinates": [-79.38, 43.65]},
        )
        restored = AddressFeature.from_geojson(original.to_geojson())
        assert restored == original

    def test_feature_collection_ids(self):
        fc = FeatureCollection.of([ParcelFeature(parcel_id=1), ParcelFeature(parcel_id=2)])
        assert len(fc) == 2
        assert fc.ids("parcel_id") == {1, 2}
        assert len(FeatureCollection.empty()) == 0


class TestProximityResult:
    def test_rejects_negative_distance(self):
        with pytest.raises(ValueError):
            ProximityResult(
                type=ProximityKind.PARK, name="x", distance_m=-1, geometry={"type": "Point", "coordinates": [0, 0]}
            )

    def test_to_nearby_rounds_distance(self):
        result = ProximityResult(
            type=ProximityKind.TRANSIT,
            name="Queen",
            distance_m=421.6,
            geometry={"type": "Point", "coordinates": [-79.3792, 43.6523]},
        )
        row = result.to_nearby()
        assert row["distance_m"] == 422
        assert row["type"] == "transit"
        assert json.loads(row["geom_geojson"])["coordinates"] == [-79.3792, 43.6523]

    def test_cross_reference_complete(self):
        assert CrossReference().complete
        assert not CrossReference(errors={"schools": "boom"}).complete
