import json
from datetime import datetime, timezone
from decimal import Decimal

from chalicelib.utils.exceptions import ValidationException


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_raw_body(chalice_request):
    request_raw_body = chalice_request.raw_body
    if request_raw_body:
        try:
            item = json.loads(request_raw_body)
        except ValueError as error:
            raise ValidationException(f'request body is not valid json: {error}')
        if not isinstance(item, dict):
            raise ValidationException('request body should be a json object')
        return item
    else:
        return {}


def to_db_values(item):
    """
    Float -> Decimal, recursively. DynamoDB rejects python floats
    """
    if isinstance(item, bool):
        return item
    if isinstance(item, float):
        return Decimal(str(item))
    if isinstance(item, dict):
        return {key: to_db_values(value) for key, value in item.items()}
    if isinstance(item, (list, tuple)):
        return [to_db_values(value) for value in item]
    return item


def from_db_values(item):
    """
    Decimal -> int or float, recursively
    """
    if isinstance(item, Decimal):
        return int(item) if item == item.to_integral_value() else float(item)
    if isinstance(item, dict):
        return {key: from_db_values(value) for key, value in item.items()}
    if isinstance(item, list):
        return [from_db_values(value) for value in item]
    return item
