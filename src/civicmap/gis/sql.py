"""PostGIS statements used by :class:`PostGISQueryService`.

Geometry is stored in EPSG:4326. Distances are computed on ``geography``
so they come back in meters. Table and column names below are constants,
never user input; all values travel as bind parameters.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import TextClause, text

from civicmap.gis.models import ProximityKind

PARCELS_IN_BBOX = text(
    """
    SELECT p.objectid AS parcel_id,
           p.f_type,
           ST_AsGeoJSON(ST_Simplify(p.geom, :tolerance)) AS geom
    FROM parcels p
    WHERE p.geom && ST_MakeEnvelope(:min_x, :min_y, :max_x, :max_y, 4326)
    ORDER BY ST_Area(p.geom) DESC
    LIMIT :limit
    """
)

ADDRESSES_IN_BBOX = text(
    """
    SELECT a.address_point_id,
           ST_AsGeoJSON(a.geom, 6) AS geom
    FROM addresses a
    WHERE a.geom && ST_MakeEnvelope(:min_x, :min_y, :max_x, :max_y, 4326)
    LIMIT :limit
    """
)

# Parcel -> addresses. "precomputed" variants read the address_parcels
# join table; "spatial" variants intersect address points with the parcel.
PARCEL_ADDRESSES_PRECOMPUTED_ENHANCED = text(
    """
    SELECT ap.address_point_id,
           a.address_number AS civic_number,
           a.linear_name_full AS street_name,
           a.address_full,
           ST_AsGeoJSON(ap.address_geom, 6) AS geom
    FROM address_parcels ap
    LEFT JOIN addresses a ON a.address_point_id = ap.address_point_id
    WHERE ap.parcel_id = :parcel_id
    LIMIT :limit
    """
)

PARCEL_ADDRESSES_PRECOMPUTED_BASIC = text(
    """
    SELECT ap.address_point_id,
           NULL AS civic_number,
           NULL AS street_name,
           NULL AS address_full,
           ST_AsGeoJSON(ap.address_geom, 6) AS geom
    FROM address_parcels ap
    WHERE ap.parcel_id = :parcel_id
    LIMIT :limit
    """
)

PARCEL_ADDRESSES_SPATIAL_ENHANCED = text(
    """
    SELECT a.address_point_id,
           a.address_number AS civic_number,
           a.linear_name_full AS street_name,
           a.address_full,
           ST_AsGeoJSON(a.geom, 6) AS geom
    FROM addresses a
    JOIN parcels p ON p.objectid = :parcel_id
    WHERE a.geom && p.geom
      AND ST_Intersects(a.geom, p.geom)
    LIMIT :limit
    """
)

PARCEL_ADDRESSES_SPATIAL_BASIC = text(
    """
    SELECT a.address_point_id,
           NULL AS civic_number,
           NULL AS street_name,
           NULL AS address_full,
           ST_AsGeoJSON(a.geom, 6) AS geom
    FROM addresses a
    JOIN parcels p ON p.objectid = :parcel_id
    WHERE a.geom && p.geom
      AND ST_Intersects(a.geom, p.geom)
    LIMIT :limit
    """
)

PARCEL_FOR_ADDRESS_PRECOMPUTED = text(
    """
    SELECT ap.parcel_id
    FROM address_parcels ap
    WHERE ap.address_point_id = :address_id
    LIMIT 1
    """
)

PARCEL_FOR_ADDRESS_SPATIAL = text(
    """
    SELECT p.objectid AS parcel_id
    FROM addresses a
    JOIN parcels p ON ST_Intersects(a.geom, p.geom)
    WHERE a.address_point_id = :address_id
    LIMIT 1
    """
)

SEARCH_ADDRESSES = text(
    r"""
    SELECT a.address_point_id AS id,
           trim(regexp_replace(
               COALESCE(NULLIF(a.address_full, 'None'),
                        concat_ws(' ', a.address_number::text, a.linear_name_full)),
               '\s+', ' ', 'g')) AS label,
           ST_X(a.geom) AS lon,
           ST_Y(a.geom) AS lat
    FROM addresses a
    WHERE a.geom IS NOT NULL
      AND lower(COALESCE(NULLIF(a.address_full, 'None'),
                         concat_ws(' ', a.address_number::text, a.linear_name_full)))
          LIKE lower('%' || CAST(:q AS text) || '%')
    LIMIT :limit
    """
)

SNAP_TO_ROAD = text(
    """
    WITH input AS (
      SELECT ST_SetSRID(ST_MakePoint(:lon, :lat), 4326) AS pt
    ),
    road AS (
      SELECT c.ogc_fid,
             c.geom,
             COALESCE(c.linear_name_full, c.linear_name_label, c.linear_name) AS street
      FROM centreline c, input i
      ORDER BY c.geom <-> i.pt
      LIMIT 1
    ),
    snap AS (
      SELECT r.ogc_fid, r.street, r.geom AS road_geom, i.pt AS click_pt,
             ST_ClosestPoint(r.geom, i.pt) AS snap_pt
      FROM road r, input i
    )
    SELECT ogc_fid,
           street,
           ST_Distance(click_pt::geography, road_geom::geography) AS dist_m,
           ST_AsGeoJSON(snap_pt) AS snap_geojson,
           ST_AsGeoJSON(ST_ShortestLine(road_geom, click_pt)) AS offset_line_geojson
    FROM snap
    """
)

PROBE_CAPABILITIES = text(
    """
    SELECT EXISTS (
             SELECT FROM information_schema.tables
             WHERE table_name = 'address_parcels'
           ) AS has_address_parcels,
           (SELECT count(*) FROM information_schema.columns
            WHERE table_name = 'addresses'
              AND column_name IN ('address_number', 'linear_name_full', 'address_full')
           ) = 3 AS has_address_attributes
    """
)


@dataclass(frozen=True)
class AmenityTable:
    """Where one kind of amenity lives and how to label it."""

    kind: ProximityKind
    table: str
    name_column: str
    default_name: str
    address_expr: str = "NULL"
    # Point used for distance; polygons (parks) use their centroid.
    point_expr: str = "t.geom"
    # Radius queries cap these kinds per table before merging.
    capped: bool = True


AMENITY_TABLES: dict[ProximityKind, tuple[AmenityTable, ...]] = {
    ProximityKind.FIRE_STATION: (
        AmenityTable(ProximityKind.FIRE_STATION, "fire_stations", "name", "Fire Station", capped=False),
    ),
    ProximityKind.PARK: (
        AmenityTable(
            ProximityKind.PARK, "green_spaces", "area_name", "Park",
            point_expr="ST_Centroid(t.geom)",
        ),
    ),
    ProximityKind.POLICE_STATION: (
        AmenityTable(ProximityKind.POLICE_STATION, "police_stations", "name", "Police Station", capped=False),
    ),
    ProximityKind.TRANSIT: (
        AmenityTable(ProximityKind.TRANSIT, "ttc_stations", "stop_name", "Station"),
        AmenityTable(ProximityKind.TRANSIT, "ttc_stops", "stop_name", "Stop"),
    ),
    ProximityKind.LIBRARY: (
        AmenityTable(ProximityKind.LIBRARY, "libraries", "branchname", "Library", address_expr="t.address"),
    ),
    ProximityKind.SCHOOL: (
        AmenityTable(
            ProximityKind.SCHOOL, "schools", "name", "School",
            address_expr="COALESCE(t.address_full, t.source_address)",
        ),
    ),
}

_PARAMS_CTE = "WITH params AS (SELECT ST_SetSRID(ST_MakePoint(:lon, :lat), 4326) AS pt)"


def _select(amenity: AmenityTable) -> str:
    return (
        f"SELECT '{amenity.kind.value}' AS type, "
        f"COALESCE(t.{amenity.name_column}, '{amenity.default_name}') AS name, "
        f"{amenity.address_expr} AS address, "
        f"ST_AsGeoJSON({amenity.point_expr}) AS geom, "
        f"ST_Distance(({amenity.point_expr})::geography, params.pt::geography) AS distance_m "
        f"FROM {amenity.table} t, params"
    )


def within_statement(kinds: list[ProximityKind], per_kind_limit: int | None) -> TextClause:
    """Radius filter across *kinds*, ordered by distance, capped by ``:limit``.

    Uses ``ST_DWithin`` on geography, so the radius is exact meters.
    """
    parts = []
    for kind in kinds:
        for amenity in AMENITY_TABLES[kind]:
            fragment = (
                f"{_select(amenity)} "
                f"WHERE ST_DWithin(({amenity.point_expr})::geography, params.pt::geography, :radius) "
                f"ORDER BY distance_m"
            )
            if per_kind_limit is not None and amenity.capped:
                fragment += f" LIMIT {int(per_kind_limit)}"
            parts.append(f"({fragment})")
    union = " UNION ALL ".join(parts)
    return text(f"{_PARAMS_CTE} SELECT * FROM ({union}) pois ORDER BY distance_m LIMIT :limit")


def nearest_statement(kind: ProximityKind) -> TextClause:
    """Index-accelerated nearest neighbours (``<->``) of one kind, no radius."""
    parts = [
        f"({_select(amenity)} ORDER BY {amenity.point_expr} <-> params.pt LIMIT :limit)"
        for amenity in AMENITY_TABLES[kind]
    ]
    union = " UNION ALL ".join(parts)
    return text(f"{_PARAMS_CTE} SELECT * FROM ({union}) nn ORDER BY distance_m LIMIT :limit")
