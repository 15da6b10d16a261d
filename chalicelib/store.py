"""
Operations every delivery store offers.

DeliveryStore implements the operations once, on top of a StoreSession: the unit of work
a backend hands out for the duration of one operation. The file backend serializes sessions
and persists the snapshot when a session ends, the DynamoDB backend writes through
and guards lifecycle writes with a condition on the stored status.
"""
import uuid
from dataclasses import replace as dataclass_replace
from typing import Callable, ContextManager, Dict, List, Optional

from chalicelib import lifecycle, locator as address_locator, phones
from chalicelib.constants.constants import (
    ROLE_MANAGER, ROLE_BUSINESS, ROLE_COURIER, MIN_COURIER_AGE, MIN_PASSWORD_LENGTH, MANAGER_ACCESS_FALLBACK
)
from chalicelib.events import EventBus, EventType
from chalicelib.guards import assert_role, get_manager_access, CredentialVerifier, PlaintextCredentials
from chalicelib.models import User, CourierProfile, BusinessProfile, CourierLocation, Delivery, Customer
from chalicelib.utils.data import now_iso
from chalicelib.utils.exceptions import (
    ValidationException, InvalidCredentials, RecordNotFound, StateConflict
)
from chalicelib.utils.logger import logger

UNSET = lifecycle.UNSET


class StoreSession:
    """
    Reads and writes of one store operation.
    save_* methods receive the record as it was read, backends use it to detect lost updates
    """

    def list_users(self) -> List[User]:
        raise NotImplementedError

    def get_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def add_user(self, user: User) -> None:
        raise NotImplementedError

    def save_user(self, user: User, previous: User) -> None:
        raise NotImplementedError

    def list_deliveries(self) -> List[Delivery]:
        raise NotImplementedError

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        raise NotImplementedError

    def add_delivery(self, delivery: Delivery) -> None:
        raise NotImplementedError

    def save_delivery(self, delivery: Delivery, previous: Delivery) -> None:
        raise NotImplementedError

    def list_customers(self) -> List[Customer]:
        raise NotImplementedError

    def save_customer(self, customer: Customer, previous: Optional[Customer]) -> None:
        raise NotImplementedError


def _text(value, field: str, required: bool = True) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationException(f'{field} is required')
        return None
    if not isinstance(value, str):
        raise ValidationException(f'{field} should be a string')
    return value.strip()


def _email(value, required: bool = True) -> Optional[str]:
    email = _text(value, 'email', required)
    return email.lower() if email else None


def _phone(value, field: str = 'phone') -> str:
    normalized = phones.normalize(_text(value, field))
    if not phones.is_valid(normalized):
        raise ValidationException(f'{field} number is not valid')
    return normalized


def _password(value) -> str:
    if not isinstance(value, str) or len(value.strip()) < MIN_PASSWORD_LENGTH:
        raise ValidationException(f'password should contain at least {MIN_PASSWORD_LENGTH} characters')
    return value.strip()


def _age(value) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < MIN_COURIER_AGE:
        raise ValidationException(f'courier age should be an integer, {MIN_COURIER_AGE} or more')
    return value


def _minutes(value, field: str) -> Optional[int]:
    if value is None:
        return None
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
        raise ValidationException(f'{field} should be a non negative number')
    return int(value)


def _coordinate(value, field: str, limit: int) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not -limit <= value <= limit:
        raise ValidationException(f'{field} should be a number between -{limit} and {limit}')
    return value


def _new_id(prefix: str) -> str:
    return f'{prefix}-{uuid.uuid4().hex[:12]}'


class DeliveryStore:
    default_manager_access = MANAGER_ACCESS_FALLBACK

    def __init__(self, events: EventBus = None, locator: address_locator.AddressLocator = None,
                 credentials: CredentialVerifier = None, manager_access: str = None):
        self.events = events or EventBus()
        self.locator = locator or address_locator.NullLocator()
        self.credentials = credentials or PlaintextCredentials()
        self.manager_access_policy = manager_access or self.default_manager_access
        self._resolve_manager = get_manager_access(self.manager_access_policy)

    def session(self, read_only: bool = False) -> ContextManager[StoreSession]:
        raise NotImplementedError

    def close(self):
        self.events.close()

    def subscribe(self, listener: Callable, maxsize: int = None):
        return self.events.subscribe(listener, maxsize)

    def _publish(self, event_type: EventType, entity):
        self.events.publish(event_type, entity)

    def _manager(self, session: StoreSession, manager_id: str) -> User:
        return self._resolve_manager(session.get_user(manager_id), session.list_users)

    @staticmethod
    def _delivery(session: StoreSession, delivery_id: str) -> Delivery:
        delivery = session.get_delivery(delivery_id)
        if delivery is None:
            raise RecordNotFound(f'delivery {delivery_id} not found')
        return delivery

    @staticmethod
    def _assert_phone_free(session: StoreSession, phone: str, owner_id: str = None):
        key = phones.comparison_key(phone)
        for user in session.list_users():
            if user.id != owner_id and key and phones.comparison_key(user.phone) == key:
                raise StateConflict('phone number is already registered')

    # Queries

    def get_users(self) -> List[User]:
        with self.session(read_only=True) as session:
            return session.list_users()

    def get_deliveries(self) -> List[Delivery]:
        with self.session(read_only=True) as session:
            return sorted(session.list_deliveries(), key=lambda delivery: delivery.created_at, reverse=True)

    def get_user(self, user_id: str) -> Optional[User]:
        with self.session(read_only=True) as session:
            return session.get_user(user_id)

    def get_available_couriers_with_tokens(self) -> List[User]:
        return [user for user in self.get_users() if user.is_courier and user.is_available and user.push_token]

    def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        normalized = phones.normalize(phone)
        if not normalized:
            logger.info('get_customer_by_phone ::: empty phone, nothing to look up')
            return None
        with self.session(read_only=True) as session:
            return next((customer for customer in session.list_customers()
                         if phones.same_phone(customer.phone, normalized)), None)

    def login(self, phone: str, password: str) -> User:
        normalized = phones.normalize(phone)
        if not phones.is_valid(normalized):
            raise ValidationException('phone number is not valid')
        with self.session(read_only=True) as session:
            for user in session.list_users():
                if phones.same_phone(user.phone, normalized) and self.credentials.verify(user, password):
                    logger.info(f'login ::: {user.id=} signed in')
                    return user
        logger.warning(f'login ::: no user matches {normalized=}')
        raise InvalidCredentials('phone number or password is incorrect')

    # Registration

    def _register(self, manager_id: str, user: User) -> User:
        with self.session() as session:
            manager = self._manager(session, manager_id)
            self._assert_phone_free(session, user.phone)
            session.add_user(user)
        logger.info(f'_register ::: {manager.id=} registered {user.role} {user.id=}')
        self._publish(EventType.USER_CREATED, user)
        return user

    def register_courier(self, manager_id: str, name: str, age: int, phone: str, email: str, vehicle: str,
                         password: str, id_number: str = None) -> User:
        email = _email(email)
        courier = User(
            id=_new_id(ROLE_COURIER),
            name=_text(name, 'name'),
            phone=_phone(phone),
            password=_password(password),
            role=ROLE_COURIER,
            email=email,
            courier_profile=CourierProfile(
                age=_age(age),
                email=email,
                vehicle=_text(vehicle, 'vehicle'),
                is_available=False,
                id_number=_text(id_number, 'id number', required=False)
            )
        )
        return self._register(manager_id, courier)

    def register_business(self, manager_id: str, name: str, address: str, phone: str, email: str,
                          password: str) -> User:
        email = _email(email)
        business = User(
            id=_new_id(ROLE_BUSINESS),
            name=_text(name, 'name'),
            phone=_phone(phone),
            password=_password(password),
            role=ROLE_BUSINESS,
            email=email,
            business_profile=BusinessProfile(address=_text(address, 'address'), email=email)
        )
        return self._register(manager_id, business)

    def register_manager(self, manager_id: str, name: str, phone: str, email: str, password: str) -> User:
        manager = User(
            id=_new_id(ROLE_MANAGER),
            name=_text(name, 'name'),
            phone=_phone(phone),
            password=_password(password),
            role=ROLE_MANAGER,
            email=_email(email)
        )
        return self._register(manager_id, manager)

    def manager_update_user(self, manager_id: str, user_id: str, name: str = None, phone: str = None,
                            email: str = None, password: str = None, courier_profile: Dict = None,
                            business_profile: Dict = None) -> User:
        """
        Partial update, blank values keep the stored ones.
        A given phone has to be valid and free, a given password long enough
        """
        changes = {}
        if _text(name, 'name', required=False):
            changes['name'] = _text(name, 'name')
        if _text(phone, 'phone', required=False):
            changes['phone'] = _phone(phone)
        if _email(email, required=False):
            changes['email'] = _email(email)
        if _text(password, 'password', required=False):
            changes['password'] = _password(password)

        with self.session() as session:
            manager = self._manager(session, manager_id)
            target = session.get_user(user_id)
            if target is None:
                raise RecordNotFound(f'user {user_id} not found')
            if 'phone' in changes:
                self._assert_phone_free(session, changes['phone'], owner_id=target.id)

            if target.role == ROLE_COURIER and courier_profile:
                changes['courier_profile'] = self._updated_courier_profile(target, courier_profile)
            if target.role == ROLE_BUSINESS and business_profile:
                changes['business_profile'] = self._updated_business_profile(target, business_profile)

            updated = target.replace(**changes)
            if updated != target:
                session.save_user(updated, target)
        logger.info(f'manager_update_user ::: {manager.id=} updated {user_id=} fields={sorted(changes)}')
        self._publish(EventType.USER_UPDATED, updated)
        return updated

    @staticmethod
    def _updated_courier_profile(target: User, profile: Dict) -> CourierProfile:
        if not isinstance(profile, dict):
            raise ValidationException('courier profile should be an object')
        current = target.courier_profile
        changes = {}
        if profile.get('age') is not None:
            changes['age'] = _age(profile['age'])
        if _text(profile.get('vehicle'), 'vehicle', required=False):
            changes['vehicle'] = _text(profile['vehicle'], 'vehicle')
        if _email(profile.get('email'), required=False):
            changes['email'] = _email(profile['email'])
        if _text(profile.get('idNumber'), 'id number', required=False):
            changes['id_number'] = _text(profile['idNumber'], 'id number')
        if current is None:
            missing = [key for key in ('age', 'vehicle', 'email') if key not in changes]
            if missing:
                raise ValidationException(f'courier profile is missing {", ".join(missing)}')
            return CourierProfile(**changes)
        return dataclass_replace(current, **changes)

    @staticmethod
    def _updated_business_profile(target: User, profile: Dict) -> BusinessProfile:
        if not isinstance(profile, dict):
            raise ValidationException('business profile should be an object')
        current = target.business_profile
        address = _text(profile.get('address'), 'address', required=False) or (current.address if current else None)
        email = _email(profile.get('email'), required=False) or (current.email if current else None)
        if not address or not email:
            raise ValidationException('business profile needs address and email')
        return BusinessProfile(address=address, email=email)

    # Courier self service

    def _courier_with_profile(self, session: StoreSession, courier_id: str) -> User:
        courier = assert_role(session.get_user(courier_id), ROLE_COURIER)
        if courier.courier_profile is None:
            raise RecordNotFound(f'courier profile of {courier_id} not found')
        return courier

    def courier_update_availability(self, courier_id: str, is_available: bool) -> User:
        if not isinstance(is_available, bool):
            raise ValidationException('availability should be true or false')
        with self.session() as session:
            courier = self._courier_with_profile(session, courier_id)
            if courier.courier_profile.is_available == is_available:
                logger.info(f'courier_update_availability ::: {courier_id=} already {is_available=}')
                return courier
            profile = dataclass_replace(courier.courier_profile, is_available=is_available)
            updated = courier.replace(courier_profile=profile)
            session.save_user(updated, courier)
        self._publish(EventType.USER_UPDATED, updated)
        return updated

    def courier_update_location(self, courier_id: str, latitude: float, longitude: float) -> User:
        location = CourierLocation(
            latitude=_coordinate(latitude, 'latitude', 90),
            longitude=_coordinate(longitude, 'longitude', 180),
            updated_at=now_iso()
        )
        with self.session() as session:
            courier = self._courier_with_profile(session, courier_id)
            profile = dataclass_replace(courier.courier_profile, current_location=location)
            updated = courier.replace(courier_profile=profile)
            session.save_user(updated, courier)
        self._publish(EventType.USER_UPDATED, updated)
        return updated

    def register_push_token(self, user_id: str, push_token: str) -> User:
        push_token = _text(push_token, 'push token')
        with self.session() as session:
            user = session.get_user(user_id)
            if user is None:
                raise RecordNotFound(f'user {user_id} not found')
            if user.push_token == push_token:
                return user
            updated = user.replace(push_token=push_token)
            session.save_user(updated, user)
        logger.info(f'register_push_token ::: token registered for {user_id=}, token={push_token[:20]}...')
        return updated

    # Deliveries

    def create_delivery(self, business_id: str, pickup_address: str, dropoff_address: str, customer_name: str,
                        customer_phone: str, preparation_time_minutes: int = None, notes: str = '',
                        customer_city: str = None, customer_floor: str = None) -> Delivery:
        pickup_address = _text(pickup_address, 'pickup address')
        dropoff_address = _text(dropoff_address, 'dropoff address')
        customer_name = _text(customer_name, 'customer name')
        customer_phone = _text(customer_phone, 'customer phone')
        preparation_time_minutes = _minutes(preparation_time_minutes, 'preparation time')
        notes = _text(notes, 'notes', required=False) or ''

        with self.session(read_only=True) as session:
            assert_role(session.get_user(business_id), ROLE_BUSINESS)

        pickup_address = address_locator.with_coordinates(
            pickup_address, address_locator.safe_locate(self.locator, pickup_address))
        dropoff_address = address_locator.with_coordinates(
            dropoff_address, address_locator.safe_locate(self.locator, dropoff_address))
        distance_km = address_locator.distance_between(pickup_address, dropoff_address)

        now = now_iso()
        delivery = lifecycle.new_delivery(
            business_id=business_id,
            pickup_address=pickup_address,
            dropoff_address=dropoff_address,
            customer_name=customer_name,
            customer_phone=customer_phone,
            created_at=now,
            notes=notes,
            preparation_time_minutes=preparation_time_minutes,
            distance_km=distance_km
        )
        with self.session() as session:
            assert_role(session.get_user(business_id), ROLE_BUSINESS)
            session.add_delivery(delivery)
            if phones.is_valid(phones.normalize(customer_phone)):
                self._upsert_customer(session, customer_phone, customer_name, now,
                                      address=address_locator.clean_address(dropoff_address),
                                      city=customer_city, floor=customer_floor, business_id=business_id)
        logger.info(f'create_delivery ::: {delivery.id=} created by {business_id=}, {distance_km=}')
        self._publish(EventType.DELIVERY_CREATED, delivery)
        return delivery

    def manager_update_delivery(self, manager_id: str, delivery_id: str, status=UNSET, courier_id=UNSET) -> Delivery:
        with self.session() as session:
            manager = self._manager(session, manager_id)
            current = self._delivery(session, delivery_id)
            updated = lifecycle.override(current, now_iso(), status=status, courier_id=courier_id)
            if updated.courier_id:
                courier = session.get_user(updated.courier_id)
                if courier is None:
                    raise RecordNotFound(f'courier {updated.courier_id} not found')
                if courier.role != ROLE_COURIER:
                    raise ValidationException(f'user {updated.courier_id} is not a courier')
            if updated != current:
                session.save_delivery(updated, current)
        logger.info(f'manager_update_delivery ::: {manager.id=} set {delivery_id=} '
                    f'status={updated.status} courier={updated.courier_id}')
        self._publish(EventType.DELIVERY_UPDATED, updated)
        return updated

    def courier_take_delivery(self, courier_id: str, delivery_id: str,
                              estimated_arrival_minutes: int = None) -> Delivery:
        estimated_arrival_minutes = _minutes(estimated_arrival_minutes, 'estimated arrival')
        with self.session() as session:
            assert_role(session.get_user(courier_id), ROLE_COURIER)
            current = self._delivery(session, delivery_id)
            if lifecycle.is_repeated_take(current, courier_id):
                logger.info(f'courier_take_delivery ::: {courier_id=} already holds {delivery_id=}')
                return current
            updated = lifecycle.take(current, courier_id, estimated_arrival_minutes)
            session.save_delivery(updated, current)
        self._publish(EventType.DELIVERY_ASSIGNED, updated)
        return updated

    def _transition(self, actor_id: str, role: str, delivery_id: str, transition: Callable,
                    event_type: EventType) -> Delivery:
        with self.session() as session:
            assert_role(session.get_user(actor_id), role)
            current = self._delivery(session, delivery_id)
            updated = transition(current)
            session.save_delivery(updated, current)
        logger.info(f'_transition ::: {actor_id=} {delivery_id=} -> {event_type.value}')
        self._publish(event_type, updated)
        return updated

    def business_confirm_delivery(self, business_id: str, delivery_id: str) -> Delivery:
        return self._transition(business_id, ROLE_BUSINESS, delivery_id,
                                lambda delivery: lifecycle.confirm(delivery, business_id, now_iso()),
                                EventType.DELIVERY_UPDATED)

    def business_mark_ready(self, business_id: str, delivery_id: str) -> Delivery:
        return self._transition(business_id, ROLE_BUSINESS, delivery_id,
                                lambda delivery: lifecycle.mark_ready(delivery, business_id),
                                EventType.DELIVERY_READY)

    def courier_pickup_delivery(self, courier_id: str, delivery_id: str) -> Delivery:
        return self._transition(courier_id, ROLE_COURIER, delivery_id,
                                lambda delivery: lifecycle.pick_up(delivery, courier_id, now_iso()),
                                EventType.DELIVERY_UPDATED)

    def courier_complete_delivery(self, courier_id: str, delivery_id: str) -> Delivery:
        return self._transition(courier_id, ROLE_COURIER, delivery_id,
                                lambda delivery: lifecycle.complete(delivery, courier_id, now_iso()),
                                EventType.DELIVERY_COMPLETED)

    # Customers

    @staticmethod
    def _upsert_customer(session: StoreSession, phone: str, name: str, now: str, address: str = None,
                         city: str = None, floor: str = None, notes: str = None,
                         business_id: str = None) -> Customer:
        """
        Customer record is overwritten with the latest details, only id and creation time survive
        """
        normalized = phones.normalize(phone)
        existing = next((customer for customer in session.list_customers()
                         if phones.same_phone(customer.phone, normalized)), None)
        customer = Customer(
            id=existing.id if existing else _new_id('customer'),
            phone=normalized,
            name=name,
            address=_text(address, 'address', required=False),
            city=_text(city, 'city', required=False),
            floor=_text(floor, 'floor', required=False),
            notes=_text(notes, 'notes', required=False),
            business_id=business_id or None,
            created_at=existing.created_at if existing and existing.created_at else now,
            updated_at=now
        )
        session.save_customer(customer, existing)
        return customer

    def save_customer(self, phone: str, name: str, address: str = None, city: str = None, floor: str = None,
                      notes: str = None, business_id: str = None) -> Customer:
        phone = _phone(phone)
        name = _text(name, 'customer name')
        with self.session() as session:
            customer = self._upsert_customer(session, phone, name, now_iso(), address=address, city=city,
                                             floor=floor, notes=notes, business_id=business_id)
        logger.info(f'save_customer ::: {customer.id=} saved')
        return customer

