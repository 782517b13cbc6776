"""
Geometry helpers for the quest map.

This module provides geographic coordinates, great-circle distances, a
web-mercator projection to screen space, and the tagged radius used by
nearest-neighbour and cluster queries.
"""

import math
from dataclasses import dataclass
from typing import Optional, Protocol, Union

EARTH_RADIUS_METERS = 6371008.8
MAX_MERCATOR_LATITUDE = 85.051129
DEFAULT_TILE_SIZE = 512


@dataclass
class LngLat:
    """Geographic coordinate in degrees."""

    lng: float
    lat: float

    def distance_to(self, other: "LngLat") -> float:
        """Great-circle distance to another coordinate in metres (haversine)."""
        lat1 = math.radians(self.lat)
        lat2 = math.radians(other.lat)
        d_lat = lat2 - lat1
        d_lng = math.radians(other.lng - self.lng)

        a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
        return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    def to_dict(self):
        return {"lng": self.lng, "lat": self.lat}


@dataclass
class Point:
    """Screen-space point in pixels."""

    x: float
    y: float

    def dist(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


class Projection(Protocol):
    def project(self, location: LngLat) -> Point:
        ...


class WebMercatorProjection:
    """Projects coordinates onto a viewport the way slippy-map widgets do.

    Attributes:
        center: Coordinate at the middle of the viewport.
        zoom: Fractional zoom level.
        width: Viewport width in pixels.
        height: Viewport height in pixels.
        tile_size: Size of one world tile at zoom 0.
    """

    def __init__(
        self,
        center: LngLat,
        zoom: float,
        width: float = 0,
        height: float = 0,
        tile_size: int = DEFAULT_TILE_SIZE,
    ):
        self.center = center
        self.zoom = zoom
        self.width = width
        self.height = height
        self.tile_size = tile_size

    @property
    def world_size(self) -> float:
        return self.tile_size * 2 ** self.zoom

    def _world_point(self, location: LngLat) -> Point:
        lat = max(-MAX_MERCATOR_LATITUDE, min(MAX_MERCATOR_LATITUDE, location.lat))
        x = (180 + location.lng) / 360
        y = (180 - math.degrees(math.log(math.tan(math.pi / 4 + math.radians(lat) / 2)))) / 360
        return Point(x * self.world_size, y * self.world_size)

    def project(self, location: LngLat) -> Point:
        """Project a coordinate to viewport pixels."""
        point = self._world_point(location)
        origin = self._world_point(self.center)
        return Point(
            point.x - origin.x + self.width / 2,
            point.y - origin.y + self.height / 2,
        )


@dataclass
class MetersRadius:
    meters: float


@dataclass
class PixelsRadius:
    pixels: float
    projection: Projection


Radius = Union[MetersRadius, PixelsRadius]


def pixel_distance(projection: Projection, a: LngLat, b: LngLat) -> float:
    """Screen distance between two coordinates under a projection."""
    return projection.project(a).dist(projection.project(b))


def radius_distance(radius: Radius, a: LngLat, b: LngLat) -> float:
    """Distance between two coordinates in the unit the radius is expressed in."""
    if isinstance(radius, PixelsRadius):
        return pixel_distance(radius.projection, a, b)
    return a.distance_to(b)


def radius_bound(radius: Radius) -> float:
    if isinstance(radius, PixelsRadius):
        return radius.pixels
    return radius.meters


def parse_radius(
    meters: Optional[float] = None,
    pixels: Optional[float] = None,
    projection: Optional[Projection] = None,
) -> Radius:
    """Build a radius from request parameters.

    Args:
        meters: Great-circle bound in metres.
        pixels: Screen-space bound in pixels.
        projection: Projection used when the bound is in pixels.

    Returns:
        The tagged radius.

    Raises:
        ValueError: If neither or both bounds are given, or a pixel bound
            lacks a projection.
    """
    if (meters is None) == (pixels is None):
        raise ValueError("Exactly one of meters or pixels must be given")
    if meters is not None:
        return MetersRadius(float(meters))
    if projection is None:
        raise ValueError("A pixel radius needs a map projection")
    return PixelsRadius(float(pixels), projection)
