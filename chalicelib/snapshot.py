import hashlib
import json
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from chalicelib import phones
from chalicelib.constants.constants import ROLE_MANAGER, ROLE_COURIER
from chalicelib.models import User, Delivery, Customer, CourierProfile
from chalicelib.utils.exceptions import ValidationException
from chalicelib.utils.logger import logger

TEMP_PASSWORD = '1234'

DEFAULT_USERS = (
    User(
        id='manager-root',
        name='Head Manager',
        phone='+972500000000',
        password=TEMP_PASSWORD,
        role=ROLE_MANAGER,
        email='admin@droppi.co.il'
    ),
    User(
        id='manager-operations',
        name='Operations Support',
        phone='+972500000009',
        password='5678',
        role=ROLE_MANAGER,
        email='operations@droppi.co.il'
    ),
    User(
        id='manager-central',
        name='Central Branch Manager',
        phone='+972500000123',
        password='2468',
        role=ROLE_MANAGER,
        email='central@droppi.co.il'
    ),
    User(
        id='courier-default',
        name='Daniel Cohen',
        phone='+972500000200',
        password=TEMP_PASSWORD,
        role=ROLE_COURIER,
        email='courier@droppi.co.il',
        courier_profile=CourierProfile(age=28, email='courier@droppi.co.il', vehicle='motorcycle', is_available=False)
    ),
)


@dataclass(frozen=True)
class Snapshot:
    users: Tuple[User, ...] = ()
    deliveries: Tuple[Delivery, ...] = ()
    customers: Tuple[Customer, ...] = ()

    @classmethod
    def from_dict(cls, item) -> 'Snapshot':
        """
        Raise ValidationException when the record is not a snapshot.
        A record without customers is still valid, older files were written without them
        """
        if not isinstance(item, dict):
            raise ValidationException('snapshot should be a json object')
        if not isinstance(item.get('users'), list) or not isinstance(item.get('deliveries'), list):
            raise ValidationException('snapshot should contain users and deliveries lists')
        customers = item.get('customers') or []
        if not isinstance(customers, list):
            raise ValidationException('snapshot customers should be a list')
        for record in [*item['users'], *item['deliveries'], *customers]:
            if not isinstance(record, dict):
                raise ValidationException('snapshot records should be json objects')
        return cls(
            users=tuple(User.from_dict(record) for record in item['users']),
            deliveries=tuple(Delivery.from_dict(record) for record in item['deliveries']),
            customers=tuple(Customer.from_dict(record) for record in customers)
        )

    def to_dict(self) -> Dict:
        return {
            'users': [user.to_dict() for user in self.users],
            'deliveries': [delivery.to_dict() for delivery in self.deliveries],
            'customers': [customer.to_dict() for customer in self.customers]
        }

    def signature(self) -> str:
        serialized = json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(serialized.encode('utf-8')).hexdigest()

    # Lookups

    def find_user(self, user_id) -> Optional[User]:
        return next((user for user in self.users if user.id == user_id), None)

    def find_delivery(self, delivery_id) -> Optional[Delivery]:
        return next((delivery for delivery in self.deliveries if delivery.id == delivery_id), None)

    # Derivations, every one returns a new snapshot

    def with_user(self, user: User) -> 'Snapshot':
        return Snapshot(_put(self.users, user), self.deliveries, self.customers)

    def with_delivery(self, delivery: Delivery) -> 'Snapshot':
        return Snapshot(self.users, _put(self.deliveries, delivery, prepend=True), self.customers)

    def with_customer(self, customer: Customer) -> 'Snapshot':
        return Snapshot(self.users, self.deliveries, _put(self.customers, customer))


def _put(records: tuple, record, prepend: bool = False) -> tuple:
    """ Replace the record with the same id or add it """
    if any(existing.id == record.id for existing in records):
        return tuple(record if existing.id == record.id else existing for existing in records)
    return (record, *records) if prepend else (*records, record)


def dedupe_users(users: Tuple[User, ...]) -> Tuple[Tuple[User, ...], bool]:
    """
    First occurrence of a phone wins and keeps its phone in canonical form, later ones are dropped.
    Phones without digits are only trimmed, phones too short to compare are normalized but never treated as duplicates.
    :return:
    (users, changed)
    """
    seen = set()
    result = []
    changed = False
    for user in users:
        normalized = phones.normalize(user.phone)
        if not normalized:
            trimmed = (user.phone or '').strip()
            changed = changed or trimmed != user.phone
            result.append(user.replace(phone=trimmed))
            continue
        if not phones.is_valid(normalized):
            changed = changed or normalized != user.phone
            result.append(user.replace(phone=normalized))
            continue
        key = phones.comparison_key(normalized)
        if key in seen:
            logger.warning(f'dedupe_users ::: dropping {user.id=} with duplicated phone {normalized=}')
            changed = True
            continue
        seen.add(key)
        changed = changed or normalized != user.phone
        result.append(user.replace(phone=normalized))
    return tuple(result), changed


def ensure_seed_users(users: Tuple[User, ...], first_init: bool,
                      seeds: Tuple[User, ...] = DEFAULT_USERS) -> Tuple[Tuple[User, ...], bool]:
    """
    A manager has to exist at all times. Demo accounts are injected only on the very first initialization
    :return:
    (users, changed)
    """
    result = list(users)
    changed = False
    keys = {phones.comparison_key(user.phone) for user in result if phones.is_valid(user.phone)}

    def add(seed: User):
        nonlocal changed
        result.append(seed)
        keys.add(phones.comparison_key(seed.phone))
        changed = True
        logger.info(f'ensure_seed_users ::: seeded {seed.id=}')

    if not any(user.role == ROLE_MANAGER for user in result):
        manager = seeds[0]
        if any(user.id == manager.id for user in result):
            manager = manager.replace(id=f'{manager.id}-seed')
        add(manager)

    if first_init:
        ids = {user.id for user in result}
        for seed in seeds:
            if phones.comparison_key(seed.phone) not in keys and seed.id not in ids:
                add(seed)

    return tuple(result), changed


def normalize_snapshot(snapshot: Snapshot, first_init: bool) -> Tuple[Snapshot, bool]:
    users, deduped = dedupe_users(snapshot.users)
    users, seeded = ensure_seed_users(users, first_init)
    return Snapshot(users, snapshot.deliveries, snapshot.customers), deduped or seeded

