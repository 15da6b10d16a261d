import math
import re
from typing import Optional, Tuple

from chalicelib.utils.logger import logger

EARTH_RADIUS_KM = 6371

Coordinates = Tuple[float, float]

_COORDINATES = re.compile(r'\((-?\d+\.?\d*),\s*(-?\d+\.?\d*)\)')
_PARENTHESES = re.compile(r'\s*\([^)]*\)\s*')


class AddressLocator:
    """
    Turns a free text address into (latitude, longitude).
    Implementations return None when the address can not be located
    """

    def locate(self, address: str) -> Optional[Coordinates]:
        raise NotImplementedError


class NullLocator(AddressLocator):

    def locate(self, address: str) -> Optional[Coordinates]:
        return None


def safe_locate(locator: AddressLocator, address: str) -> Optional[Coordinates]:
    try:
        return locator.locate(clean_address(address))
    except Exception as error:
        logger.warning(f'safe_locate ::: locating {address=} failed: {error}')
        return None


def clean_address(address: str) -> str:
    return _PARENTHESES.sub(' ', address or '').strip()


def with_coordinates(address: str, coordinates: Optional[Coordinates]) -> str:
    """
    'Herzl 1, Tel Aviv' -> 'Herzl 1, Tel Aviv (32.06, 34.77)'
    """
    if not coordinates:
        return address
    return f'{clean_address(address)} ({coordinates[0]}, {coordinates[1]})'


def parse_coordinates(address: str) -> Optional[Coordinates]:
    match = _COORDINATES.search(address or '')
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def aerial_distance_km(first: Coordinates, second: Coordinates) -> float:
    lat1, lat2 = math.radians(first[0]), math.radians(second[0])
    delta_lat = math.radians(second[0] - first[0])
    delta_lon = math.radians(second[1] - first[1])

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


def distance_between(pickup_address: str, dropoff_address: str) -> Optional[float]:
    pickup, dropoff = parse_coordinates(pickup_address), parse_coordinates(dropoff_address)
    if not pickup or not dropoff:
        logger.debug(f'distance_between ::: no coordinates in {pickup_address=} {dropoff_address=}')
        return None
    return aerial_distance_km(pickup, dropoff)
