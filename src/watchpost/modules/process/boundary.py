"""
Boundary filter deciding whether a detection lies inside the watched region.
"""

from __future__ import annotations

from collections.abc import Sequence

from ...core.contracts import Point


def inside_polygon(polygon: Sequence[Point] | None, point: Point) -> bool:
    """
    Ray-casting point-in-polygon test.

    Without a polygon every point is inside. Edges run between consecutive
    vertices and close from the last vertex back to the first; a vertex shared
    by two edges is counted once thanks to the half-open Y comparison.
    """
    if polygon is None:
        return True
    if not polygon:
        return False

    inside = False
    previous = polygon[-1]
    for vertex in polygon:
        if (vertex.y < point.y <= previous.y) or (previous.y < point.y <= vertex.y):
            crossing_x = vertex.x + (point.y - vertex.y) / (previous.y - vertex.y) * (
                previous.x - vertex.x
            )
            if crossing_x < point.x:
                inside = not inside
        previous = vertex
    return inside


__all__ = ["inside_polygon"]
