# medride/services/utils/geo_utils.py
import math

EARTH_RADIUS_M = 6371008.8


def distance_meters(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """
    Расстояние между двумя точками (в метрах) по формуле Haversine.
    Аргументы в порядке GeoJSON: долгота, широта.
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c
