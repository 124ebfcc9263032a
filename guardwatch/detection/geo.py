"""
Geographic helpers for the location detector.

Functions:
    haversine_km: Great-circle distance between two points
    cluster_points: Greedy running-centroid clustering
    dominant_cluster: Most populous cluster meeting a minimum size
    point_in_polygon: Ray-casting containment test
"""

import math
from typing import Iterable, List, Optional, Sequence, Tuple

EARTH_RADIUS_KM = 6371.0

LatLon = Tuple[float, float]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in kilometres.

    Example:
        >>> round(haversine_km(-23.55, -46.63, -23.55, -46.63), 3)
        0.0
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


class Cluster:
    """A group of nearby fixes summarised by its running centroid."""

    __slots__ = ("latitude", "longitude", "size")

    def __init__(self, latitude: float, longitude: float) -> None:
        self.latitude = latitude
        self.longitude = longitude
        self.size = 1

    def add(self, latitude: float, longitude: float) -> None:
        self.size += 1
        self.latitude += (latitude - self.latitude) / self.size
        self.longitude += (longitude - self.longitude) / self.size

    def distance_km(self, latitude: float, longitude: float) -> float:
        return haversine_km(self.latitude, self.longitude, latitude, longitude)

    def __repr__(self) -> str:
        return f"Cluster(lat={self.latitude:.6f}, lon={self.longitude:.6f}, size={self.size})"


def cluster_points(points: Iterable[LatLon], radius_km: float) -> List[Cluster]:
    """
    Greedily cluster points in input order.

    Each point joins the first existing cluster whose centroid lies within
    radius_km, moving that centroid; otherwise it starts a new cluster.

    Args:
        points: (latitude, longitude) pairs, oldest first.
        radius_km: Join radius.

    Returns:
        List[Cluster]: Clusters in creation order.
    """
    clusters: List[Cluster] = []
    for lat, lon in points:
        for cluster in clusters:
            if cluster.distance_km(lat, lon) <= radius_km:
                cluster.add(lat, lon)
                break
        else:
            clusters.append(Cluster(lat, lon))
    return clusters


def dominant_cluster(
    points: Iterable[LatLon],
    radius_km: float,
    min_size: int,
) -> Optional[Cluster]:
    """
    Return the most populous cluster with at least min_size members.

    Ties go to the cluster created first.
    """
    best: Optional[Cluster] = None
    for cluster in cluster_points(points, radius_km):
        if cluster.size < min_size:
            continue
        if best is None or cluster.size > best.size:
            best = cluster
    return best


def point_in_polygon(latitude: float, longitude: float, polygon: Sequence[LatLon]) -> bool:
    """
    Ray-casting test treating (latitude, longitude) as planar coordinates.

    Adequate for zones a few kilometres across that do not straddle the
    antimeridian.
    """
    inside = False
    n = len(polygon)
    j = n - 1
    for i in range(n):
        yi, xi = polygon[i]
        yj, xj = polygon[j]
        if (yi > latitude) != (yj > latitude):
            x_cross = (xj - xi) * (latitude - yi) / (yj - yi) + xi
            if longitude < x_cross:
                inside = not inside
        j = i
    return inside
