from dataclasses import dataclass, replace as dataclass_replace
from typing import Dict, Optional

from chalicelib.constants.constants import (
    ROLES, ROLE_COURIER, DELIVERY_STATUSES, STATUS_WAITING
)
from chalicelib.utils.exceptions import ValidationException
from chalicelib.utils.logger import logger


def _is_number(x):
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _is_optional_str(x):
    return x is None or isinstance(x, str)


def _is_optional_number(x):
    return x is None or _is_number(x)


def _validate(name: str, item: dict, required: dict, optional: dict):
    """
    Raise ValidationException in case if a field is missing or has a wrong type
    """
    for key, check in required.items():
        if key not in item or check(item[key]) is not True:
            logger.warning(f'_validate ::: {name} {key=}, value={item.get(key)!r} is not valid')
            raise ValidationException(f'{name}: field {key} is missing or not valid')
    for key, check in optional.items():
        if item.get(key) is not None and check(item[key]) is not True:
            logger.warning(f'_validate ::: {name} {key=}, value={item.get(key)!r} is not valid')
            raise ValidationException(f'{name}: field {key} is not valid')


def _without_none(item: dict) -> dict:
    return {key: value for key, value in item.items() if value is not None}


@dataclass(frozen=True)
class CourierLocation:
    latitude: float
    longitude: float
    updated_at: str

    required_fields_validation = {
        'latitude': _is_number,
        'longitude': _is_number,
        'updatedAt': lambda x: isinstance(x, str),
    }

    @classmethod
    def from_dict(cls, item: dict) -> 'CourierLocation':
        _validate('currentLocation', item, cls.required_fields_validation, {})
        return cls(latitude=item['latitude'], longitude=item['longitude'], updated_at=item['updatedAt'])

    def to_dict(self) -> Dict:
        return {'latitude': self.latitude, 'longitude': self.longitude, 'updatedAt': self.updated_at}


@dataclass(frozen=True)
class CourierProfile:
    age: int
    email: str
    vehicle: str
    is_available: bool = False
    id_number: Optional[str] = None
    current_location: Optional[CourierLocation] = None

    required_fields_validation = {
        'age': lambda x: isinstance(x, int) and not isinstance(x, bool),
        'email': lambda x: isinstance(x, str),
        'vehicle': lambda x: isinstance(x, str),
    }

    optional_fields_validation = {
        'isAvailable': lambda x: isinstance(x, bool),
        'idNumber': lambda x: isinstance(x, str),
        'currentLocation': lambda x: isinstance(x, dict),
    }

    @classmethod
    def from_dict(cls, item: dict) -> 'CourierProfile':
        _validate('courierProfile', item, cls.required_fields_validation, cls.optional_fields_validation)
        location = item.get('currentLocation')
        return cls(
            age=item['age'],
            email=item['email'],
            vehicle=item['vehicle'],
            is_available=item.get('isAvailable') or False,
            id_number=item.get('idNumber'),
            current_location=CourierLocation.from_dict(location) if location else None
        )

    def to_dict(self) -> Dict:
        return _without_none({
            'age': self.age,
            'email': self.email,
            'vehicle': self.vehicle,
            'isAvailable': self.is_available,
            'idNumber': self.id_number,
            'currentLocation': self.current_location.to_dict() if self.current_location else None
        })


@dataclass(frozen=True)
class BusinessProfile:
    address: str
    email: str

    required_fields_validation = {
        'address': lambda x: isinstance(x, str),
        'email': lambda x: isinstance(x, str),
    }

    @classmethod
    def from_dict(cls, item: dict) -> 'BusinessProfile':
        _validate('businessProfile', item, cls.required_fields_validation, {})
        return cls(address=item['address'], email=item['email'])

    def to_dict(self) -> Dict:
        return {'address': self.address, 'email': self.email}


@dataclass(frozen=True)
class User:
    id: str
    name: str
    phone: str
    password: str
    role: str
    email: Optional[str] = None
    push_token: Optional[str] = None
    courier_profile: Optional[CourierProfile] = None
    business_profile: Optional[BusinessProfile] = None

    required_fields_validation = {
        'id': lambda x: isinstance(x, str) and x != '',
        'name': lambda x: isinstance(x, str),
        'phone': lambda x: isinstance(x, str),
        'password': lambda x: isinstance(x, str),
        'role': lambda x: x in ROLES,
    }

    optional_fields_validation = {
        'email': lambda x: isinstance(x, str),
        'pushToken': lambda x: isinstance(x, str),
        'courierProfile': lambda x: isinstance(x, dict),
        'businessProfile': lambda x: isinstance(x, dict),
    }

    @classmethod
    def from_dict(cls, item: dict) -> 'User':
        _validate('user', item, cls.required_fields_validation, cls.optional_fields_validation)
        courier_profile = item.get('courierProfile')
        business_profile = item.get('businessProfile')
        return cls(
            id=item['id'],
            name=item['name'],
            phone=item['phone'],
            password=item['password'],
            role=item['role'],
            email=item.get('email'),
            push_token=item.get('pushToken'),
            courier_profile=CourierProfile.from_dict(courier_profile) if courier_profile else None,
            business_profile=BusinessProfile.from_dict(business_profile) if business_profile else None
        )

    @property
    def is_courier(self) -> bool:
        return self.role == ROLE_COURIER

    @property
    def is_available(self) -> bool:
        return bool(self.courier_profile and self.courier_profile.is_available)

    def replace(self, **changes) -> 'User':
        return dataclass_replace(self, **changes)

    def to_dict(self) -> Dict:
        return _without_none({
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'password': self.password,
            'role': self.role,
            'email': self.email,
            'pushToken': self.push_token,
            'courierProfile': self.courier_profile.to_dict() if self.courier_profile else None,
            'businessProfile': self.business_profile.to_dict() if self.business_profile else None
        })

    def to_ui(self) -> Dict:
        item = self.to_dict()
        item.pop('password', None)
        return item


@dataclass(frozen=True)
class Delivery:
    id: str
    business_id: str
    pickup_address: str
    dropoff_address: str
    customer_name: str
    customer_phone: str
    created_at: str
    status: str = STATUS_WAITING
    courier_id: Optional[str] = None
    notes: str = ''
    preparation_time_minutes: Optional[int] = None
    estimated_arrival_minutes: Optional[int] = None
    business_confirmed: bool = False
    confirmed_at: Optional[str] = None
    business_ready: bool = False
    picked_up_at: Optional[str] = None
    completed_at: Optional[str] = None
    payment: Optional[float] = None
    distance_km: Optional[float] = None

    required_fields_validation = {
        'id': lambda x: isinstance(x, str) and x != '',
        'businessId': lambda x: isinstance(x, str),
        'pickupAddress': lambda x: isinstance(x, str),
        'dropoffAddress': lambda x: isinstance(x, str),
        'status': lambda x: x in DELIVERY_STATUSES,
        'createdAt': lambda x: isinstance(x, str),
        'customerName': lambda x: isinstance(x, str),
        'customerPhone': lambda x: isinstance(x, str),
    }

    optional_fields_validation = {
        'courierId': lambda x: isinstance(x, str),
        'notes': lambda x: isinstance(x, str),
        'preparationTimeMinutes': _is_optional_number,
        'estimatedArrivalMinutes': _is_optional_number,
        'businessConfirmed': lambda x: isinstance(x, bool),
        'confirmedAt': _is_optional_str,
        'businessReady': lambda x: isinstance(x, bool),
        'pickedUpAt': _is_optional_str,
        'completedAt': _is_optional_str,
        'payment': _is_optional_number,
        'distanceKm': _is_optional_number,
    }

    @classmethod
    def from_dict(cls, item: dict) -> 'Delivery':
        _validate('delivery', item, cls.required_fields_validation, cls.optional_fields_validation)
        return cls(
            id=item['id'],
            business_id=item['businessId'],
            courier_id=item.get('courierId'),
            pickup_address=item['pickupAddress'],
            dropoff_address=item['dropoffAddress'],
            notes=item.get('notes') or '',
            status=item['status'],
            created_at=item['createdAt'],
            preparation_time_minutes=item.get('preparationTimeMinutes'),
            estimated_arrival_minutes=item.get('estimatedArrivalMinutes'),
            business_confirmed=item.get('businessConfirmed') or False,
            confirmed_at=item.get('confirmedAt'),
            business_ready=item.get('businessReady') or False,
            picked_up_at=item.get('pickedUpAt'),
            completed_at=item.get('completedAt'),
            customer_name=item['customerName'],
            customer_phone=item['customerPhone'],
            payment=item.get('payment'),
            distance_km=item.get('distanceKm')
        )

    def replace(self, **changes) -> 'Delivery':
        return dataclass_replace(self, **changes)

    def to_dict(self) -> Dict:
        item = _without_none({
            'id': self.id,
            'businessId': self.business_id,
            'pickupAddress': self.pickup_address,
            'dropoffAddress': self.dropoff_address,
            'notes': self.notes,
            'status': self.status,
            'createdAt': self.created_at,
            'preparationTimeMinutes': self.preparation_time_minutes,
            'estimatedArrivalMinutes': self.estimated_arrival_minutes,
            'businessConfirmed': self.business_confirmed,
            'confirmedAt': self.confirmed_at,
            'businessReady': self.business_ready,
            'pickedUpAt': self.picked_up_at,
            'completedAt': self.completed_at,
            'customerName': self.customer_name,
            'customerPhone': self.customer_phone,
            'payment': self.payment,
            'distanceKm': self.distance_km
        })
        item['courierId'] = self.courier_id
        return item


@dataclass(frozen=True)
class Customer:
    id: str
    phone: str
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    floor: Optional[str] = None
    notes: Optional[str] = None
    business_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    required_fields_validation = {
        'id': lambda x: isinstance(x, str) and x != '',
        'phone': lambda x: isinstance(x, str),
        'name': lambda x: isinstance(x, str),
    }

    optional_fields_validation = {
        'address': lambda x: isinstance(x, str),
        'city': lambda x: isinstance(x, str),
        'floor': lambda x: isinstance(x, str),
        'notes': lambda x: isinstance(x, str),
        'businessId': lambda x: isinstance(x, str),
        'createdAt': lambda x: isinstance(x, str),
        'updatedAt': lambda x: isinstance(x, str),
    }

    @classmethod
    def from_dict(cls, item: dict) -> 'Customer':
        _validate('customer', item, cls.required_fields_validation, cls.optional_fields_validation)
        return cls(
            id=item['id'],
            phone=item['phone'],
            name=item['name'],
            address=item.get('address'),
            city=item.get('city'),
            floor=item.get('floor'),
            notes=item.get('notes'),
            business_id=item.get('businessId'),
            created_at=item.get('createdAt'),
            updated_at=item.get('updatedAt')
        )

    def replace(self, **changes) -> 'Customer':
        return dataclass_replace(self, **changes)

    def to_dict(self) -> Dict:
        return _without_none({
            'id': self.id,
            'phone': self.phone,
            'name': self.name,
            'address': self.address,
            'city': self.city,
            'floor': self.floor,
            'notes': self.notes,
            'businessId': self.business_id,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at
        })
