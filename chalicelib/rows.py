"""
Row schemas of the DynamoDB tables.

Items are validated when they come out of a table, a row that does not fit its schema
is reported as a storage failure instead of leaking half-built entities to callers.
"""
from decimal import Decimal
from typing import Dict, Optional

from chalicelib import phones
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import ROLES, DELIVERY_STATUSES, ROLE_COURIER, ROLE_BUSINESS
from chalicelib.models import User, CourierProfile, BusinessProfile, CourierLocation, Delivery, Customer
from chalicelib.utils.data import to_db_values, from_db_values
from chalicelib.utils.exceptions import StorageFailed
from chalicelib.utils.logger import logger


def _is_str(x):
    return isinstance(x, str)


def _is_int(x):
    return isinstance(x, (int, Decimal)) and not isinstance(x, bool) and x == int(x)


def _is_number(x):
    return isinstance(x, (int, float, Decimal)) and not isinstance(x, bool)


class Row:
    table_env, hash_key = None, None

    required_fields_validation = {}
    optional_fields_validation = {}
    allowed_attrs_to_delete = []

    @classmethod
    def validate(cls, item: Dict) -> Dict:
        """
        Raise StorageFailed in case if the item does not fit the row schema
        :return:
        item with python numbers instead of Decimals
        """
        for key, check in cls.required_fields_validation.items():
            if item.get(key) is None or check(item[key]) is not True:
                logger.error(f'{cls.__name__}.validate ::: {key=}, value={item.get(key)!r} is not valid')
                raise StorageFailed(f'{cls.__name__}: malformed row, field {key} is missing or not valid')
        for key, check in cls.optional_fields_validation.items():
            if item.get(key) is not None and check(item[key]) is not True:
                logger.error(f'{cls.__name__}.validate ::: {key=}, value={item.get(key)!r} is not valid')
                raise StorageFailed(f'{cls.__name__}: malformed row, field {key} is not valid')
        return from_db_values(item)

    @classmethod
    def update_fields_whitelist(cls):
        return [key for key in [*cls.required_fields_validation, *cls.optional_fields_validation]
                if key != cls.hash_key]

    @staticmethod
    def clean(item: Dict) -> Dict:
        return to_db_values({key: value for key, value in item.items() if value is not None})


class UserRow(Row):
    table_env, hash_key = keys_structure.users_table

    required_fields_validation = {
        'id': _is_str,
        'name': _is_str,
        'phone': _is_str,
        'password': _is_str,
        'role': lambda x: x in ROLES,
    }

    optional_fields_validation = {
        'email': _is_str,
        'push_token': _is_str,
        'created_at': _is_str,
        'updated_at': _is_str,
    }

    allowed_attrs_to_delete = ['email', 'push_token']

    @classmethod
    def to_item(cls, user: User, now: str = None) -> Dict:
        return {
            'id': user.id,
            'name': user.name,
            'phone': user.phone,
            'password': user.password,
            'role': user.role,
            'email': user.email,
            'push_token': user.push_token,
            'updated_at': now,
        }


class CourierProfileRow(Row):
    table_env, hash_key = keys_structure.courier_profiles_table

    required_fields_validation = {
        'user_id': _is_str,
        'age': _is_int,
        'email': _is_str,
        'vehicle': _is_str,
    }

    optional_fields_validation = {
        'is_available': lambda x: isinstance(x, bool),
        'id_number': _is_str,
        'current_latitude': _is_number,
        'current_longitude': _is_number,
        'location_updated_at': _is_str,
    }

    allowed_attrs_to_delete = ['id_number', 'current_latitude', 'current_longitude', 'location_updated_at']

    @classmethod
    def to_item(cls, user_id: str, profile: CourierProfile) -> Dict:
        location = profile.current_location
        return {
            'user_id': user_id,
            'age': profile.age,
            'email': profile.email,
            'vehicle': profile.vehicle,
            'is_available': profile.is_available,
            'id_number': profile.id_number,
            'current_latitude': location.latitude if location else None,
            'current_longitude': location.longitude if location else None,
            'location_updated_at': location.updated_at if location else None,
        }

    @classmethod
    def to_profile(cls, item: Dict) -> CourierProfile:
        row = cls.validate(item)
        location = None
        if row.get('current_latitude') is not None and row.get('current_longitude') is not None:
            location = CourierLocation(
                latitude=row['current_latitude'],
                longitude=row['current_longitude'],
                updated_at=row.get('location_updated_at') or ''
            )
        return CourierProfile(
            age=row['age'],
            email=row['email'],
            vehicle=row['vehicle'],
            is_available=row.get('is_available') or False,
            id_number=row.get('id_number'),
            current_location=location
        )


class BusinessProfileRow(Row):
    table_env, hash_key = keys_structure.business_profiles_table

    required_fields_validation = {
        'user_id': _is_str,
        'address': _is_str,
        'email': _is_str,
    }

    @classmethod
    def to_item(cls, user_id: str, profile: BusinessProfile) -> Dict:
        return {'user_id': user_id, 'address': profile.address, 'email': profile.email}

    @classmethod
    def to_profile(cls, item: Dict) -> BusinessProfile:
        row = cls.validate(item)
        return BusinessProfile(address=row['address'], email=row['email'])


def user_from_rows(user_item: Dict, courier_item: Optional[Dict], business_item: Optional[Dict]) -> User:
    """
    Base row merged with at most one profile row, the one matching the role
    """
    row = UserRow.validate(user_item)
    return User(
        id=row['id'],
        name=row['name'],
        phone=row['phone'],
        password=row['password'],
        role=row['role'],
        email=row.get('email'),
        push_token=row.get('push_token'),
        courier_profile=CourierProfileRow.to_profile(courier_item)
        if courier_item and row['role'] == ROLE_COURIER else None,
        business_profile=BusinessProfileRow.to_profile(business_item)
        if business_item and row['role'] == ROLE_BUSINESS else None
    )


class DeliveryRow(Row):
    table_env, hash_key = keys_structure.deliveries_table

    required_fields_validation = {
        'id': _is_str,
        'business_id': _is_str,
        'pickup_address': _is_str,
        'dropoff_address': _is_str,
        'status': lambda x: x in DELIVERY_STATUSES,
        'created_at': _is_str,
        'customer_name': _is_str,
        'customer_phone': _is_str,
    }

    optional_fields_validation = {
        'courier_id': _is_str,
        'notes': _is_str,
        'preparation_time_minutes': _is_int,
        'estimated_arrival_minutes': _is_int,
        'business_confirmed': lambda x: isinstance(x, bool),
        'confirmed_at': _is_str,
        'business_ready': lambda x: isinstance(x, bool),
        'picked_up_at': _is_str,
        'completed_at': _is_str,
        'payment': _is_number,
        'distance_km': _is_number,
        'updated_at': _is_str,
    }

    allowed_attrs_to_delete = ['courier_id', 'notes', 'preparation_time_minutes', 'estimated_arrival_minutes',
                               'confirmed_at', 'picked_up_at', 'completed_at', 'payment', 'distance_km']

    @classmethod
    def to_item(cls, delivery: Delivery, now: str = None) -> Dict:
        return {
            'id': delivery.id,
            'business_id': delivery.business_id,
            'courier_id': delivery.courier_id,
            'pickup_address': delivery.pickup_address,
            'dropoff_address': delivery.dropoff_address,
            'notes': delivery.notes,
            'status': delivery.status,
            'preparation_time_minutes': delivery.preparation_time_minutes,
            'estimated_arrival_minutes': delivery.estimated_arrival_minutes,
            'business_confirmed': delivery.business_confirmed,
            'confirmed_at': delivery.confirmed_at,
            'business_ready': delivery.business_ready,
            'picked_up_at': delivery.picked_up_at,
            'completed_at': delivery.completed_at,
            'customer_name': delivery.customer_name,
            'customer_phone': delivery.customer_phone,
            'payment': delivery.payment,
            'distance_km': delivery.distance_km,
            'created_at': delivery.created_at,
            'updated_at': now,
        }

    @classmethod
    def to_delivery(cls, item: Dict) -> Delivery:
        row = cls.validate(item)
        return Delivery(
            id=row['id'],
            business_id=row['business_id'],
            courier_id=row.get('courier_id'),
            pickup_address=row['pickup_address'],
            dropoff_address=row['dropoff_address'],
            notes=row.get('notes') or '',
            status=row['status'],
            created_at=row['created_at'],
            preparation_time_minutes=row.get('preparation_time_minutes'),
            estimated_arrival_minutes=row.get('estimated_arrival_minutes'),
            business_confirmed=row.get('business_confirmed') or False,
            confirmed_at=row.get('confirmed_at'),
            business_ready=row.get('business_ready') or False,
            picked_up_at=row.get('picked_up_at'),
            completed_at=row.get('completed_at'),
            customer_name=row['customer_name'],
            customer_phone=row['customer_phone'],
            payment=row.get('payment'),
            distance_km=row.get('distance_km')
        )


class CustomerRow(Row):
    table_env, hash_key = keys_structure.customers_table

    required_fields_validation = {
        'id': _is_str,
        'phone': _is_str,
        'name': _is_str,
    }

    optional_fields_validation = {
        'address': _is_str,
        'city': _is_str,
        'floor': _is_str,
        'notes': _is_str,
        'business_id': _is_str,
        'created_at': _is_str,
        'updated_at': _is_str,
    }

    allowed_attrs_to_delete = ['address', 'city', 'floor', 'notes', 'business_id']

    @classmethod
    def to_item(cls, customer: Customer) -> Dict:
        return {
            'id': customer.id,
            'phone': customer.phone,
            'name': customer.name,
            'address': customer.address,
            'city': customer.city,
            'floor': customer.floor,
            'notes': customer.notes,
            'business_id': customer.business_id,
            'created_at': customer.created_at,
            'updated_at': customer.updated_at,
        }

    @classmethod
    def to_customer(cls, item: Dict) -> Customer:
        row = cls.validate(item)
        return Customer(
            id=row['id'],
            phone=row['phone'],
            name=row['name'],
            address=row.get('address'),
            city=row.get('city'),
            floor=row.get('floor'),
            notes=row.get('notes'),
            business_id=row.get('business_id'),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at')
        )


class PhoneClaimRow(Row):
    """ One item per registered phone, keyed by its comparison key """
    table_env, hash_key = keys_structure.phone_claims_table

    required_fields_validation = {
        'phone_key': _is_str,
        'user_id': _is_str,
    }

    @classmethod
    def key(cls, phone: str) -> Dict:
        return {cls.hash_key: phones.comparison_key(phone)}

    @classmethod
    def to_item(cls, phone: str, user_id: str) -> Dict:
        return {**cls.key(phone), 'user_id': user_id}
