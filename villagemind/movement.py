from __future__ import annotations

import math
import random

from .schemas import Vec3


def planar_offset(origin: Vec3, target: Vec3) -> tuple[float, float]:
    return target[0] - origin[0], target[2] - origin[2]


def planar_distance(a: Vec3, b: Vec3) -> float:
    dx, dz = planar_offset(a, b)
    return math.sqrt(dx * dx + dz * dz)


def distance_3d(a: Vec3, b: Vec3) -> float:
    return math.sqrt((a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2)


def random_point_around(home: Vec3, radius: float, rng: random.Random) -> tuple[float, float]:
    """Uniform angle, uniform distance: returns planar (x, z) within ``radius``."""

    angle = rng.random() * math.pi * 2
    distance = rng.random() * max(radius, 0.0)
    return home[0] + math.cos(angle) * distance, home[2] + math.sin(angle) * distance
