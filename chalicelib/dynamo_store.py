import time
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from chalicelib import phones
from chalicelib.constants.constants import (
    MANAGER_ACCESS_STRICT, LOGIN_MAX_ATTEMPTS, LOGIN_RETRY_DELAY_SECONDS, ROLE_COURIER, ROLE_BUSINESS
)
from chalicelib.models import User, Delivery, Customer
from chalicelib.rows import (
    UserRow, CourierProfileRow, BusinessProfileRow, DeliveryRow, CustomerRow, PhoneClaimRow, user_from_rows
)
from chalicelib.store import DeliveryStore, StoreSession
from chalicelib.utils import db as utils_db
from chalicelib.utils.data import now_iso
from chalicelib.utils.exceptions import StateConflict, StorageFailed, TransientStorageFailure
from chalicelib.utils.logger import logger


def _condition_failed(error: ClientError) -> bool:
    return utils_db.error_code(error) == utils_db.CONDITION_FAILED


class DynamoSession(StoreSession):
    """
    Reads go to the tables every time, writes happen immediately.
    Delivery writes carry the status they were computed from as a condition
    """

    def __init__(self, table_factory: Callable):
        self._table_factory = table_factory

    def _table(self, row_cls):
        return self._table_factory(row_cls.table_env)

    def _profiles(self, row_cls) -> Dict[str, Dict]:
        return {item['user_id']: item for item in utils_db.scan_items_paged(self._table(row_cls))}

    def list_users(self) -> List[User]:
        user_items = utils_db.scan_items_paged(self._table(UserRow))
        courier_items = self._profiles(CourierProfileRow)
        business_items = self._profiles(BusinessProfileRow)
        return [user_from_rows(item, courier_items.get(item.get('id')), business_items.get(item.get('id')))
                for item in user_items]

    def get_user(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        user_item = utils_db.get_db_item(self._table(UserRow), {UserRow.hash_key: user_id})
        if user_item is None:
            return None
        courier_item = business_item = None
        if user_item.get('role') == ROLE_COURIER:
            courier_item = utils_db.get_db_item(self._table(CourierProfileRow), {CourierProfileRow.hash_key: user_id})
        elif user_item.get('role') == ROLE_BUSINESS:
            business_item = utils_db.get_db_item(self._table(BusinessProfileRow),
                                                 {BusinessProfileRow.hash_key: user_id})
        return user_from_rows(user_item, courier_item, business_item)

    @staticmethod
    def _profile_item(user: User) -> Tuple[Optional[type], Optional[Dict]]:
        if user.courier_profile is not None:
            return CourierProfileRow, CourierProfileRow.to_item(user.id, user.courier_profile)
        if user.business_profile is not None:
            return BusinessProfileRow, BusinessProfileRow.to_item(user.id, user.business_profile)
        return None, None

    def claim_phone(self, phone: str, user_id: str) -> None:
        """
        Conditional put on the phone key, only one user can hold a phone at a time
        """
        try:
            utils_db.put_db_record(self._table(PhoneClaimRow), PhoneClaimRow.to_item(phone, user_id),
                                   unique_key=PhoneClaimRow.hash_key)
        except ClientError as error:
            if _condition_failed(error):
                logger.warning(f'claim_phone ::: phone of {user_id=} is held by another user')
                raise StateConflict('phone number is already registered') from error
            raise

    def release_phone(self, phone: str, user_id: str) -> None:
        try:
            utils_db.delete_db_record(self._table(PhoneClaimRow), PhoneClaimRow.key(phone))
        except Exception as error:
            logger.error(f'release_phone ::: releasing the phone of {user_id=} failed: {error}')

    def add_user(self, user: User) -> None:
        """
        Phone claim first, then the base row, then the profile row.
        A failed step undoes the ones before it
        """
        now = now_iso()
        self.claim_phone(user.phone, user.id)
        try:
            utils_db.put_db_record(
                self._table(UserRow),
                UserRow.clean({**UserRow.to_item(user, now), 'created_at': now}),
                unique_key=UserRow.hash_key
            )
        except Exception as error:
            self.release_phone(user.phone, user.id)
            if isinstance(error, ClientError) and _condition_failed(error):
                raise StateConflict(f'user {user.id} already exists') from error
            raise

        row_cls, profile_item = self._profile_item(user)
        if row_cls is None:
            return
        try:
            utils_db.put_db_record(self._table(row_cls), row_cls.clean(profile_item))
        except Exception as error:
            logger.error(f'add_user ::: profile insert for {user.id=} failed, removing the user row: {error}')
            try:
                utils_db.delete_db_record(self._table(UserRow), {UserRow.hash_key: user.id})
            except Exception as delete_error:
                logger.error(f'add_user ::: compensating delete of {user.id=} failed: {delete_error}')
            self.release_phone(user.phone, user.id)
            raise

    def save_user(self, user: User, previous: User) -> None:
        if user == previous:
            return
        phone_moved = not phones.same_phone(user.phone, previous.phone)
        if phone_moved:
            self.claim_phone(user.phone, user.id)
        try:
            utils_db.update_db_record(
                table=self._table(UserRow),
                key={UserRow.hash_key: user.id},
                update_body=UserRow.to_item(user, now_iso()),
                allowed_attrs_to_update=UserRow.update_fields_whitelist(),
                allowed_attrs_to_delete=UserRow.allowed_attrs_to_delete
            )
        except Exception:
            if phone_moved:
                self.release_phone(user.phone, user.id)
            raise
        if phone_moved:
            self.release_phone(previous.phone, user.id)

        row_cls, profile_item = self._profile_item(user)
        if row_cls is None:
            return
        previous_profile = previous.courier_profile if row_cls is CourierProfileRow else previous.business_profile
        current_profile = user.courier_profile if row_cls is CourierProfileRow else user.business_profile
        if previous_profile is None:
            utils_db.put_db_record(self._table(row_cls), row_cls.clean(profile_item))
        elif previous_profile != current_profile:
            utils_db.update_db_record(
                table=self._table(row_cls),
                key={row_cls.hash_key: user.id},
                update_body=profile_item,
                allowed_attrs_to_update=row_cls.update_fields_whitelist(),
                allowed_attrs_to_delete=row_cls.allowed_attrs_to_delete
            )

    def list_deliveries(self) -> List[Delivery]:
        return [DeliveryRow.to_delivery(item) for item in utils_db.scan_items_paged(self._table(DeliveryRow))]

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        item = utils_db.get_db_item(self._table(DeliveryRow), {DeliveryRow.hash_key: delivery_id})
        return DeliveryRow.to_delivery(item) if item else None

    def add_delivery(self, delivery: Delivery) -> None:
        now = now_iso()
        utils_db.put_db_record(self._table(DeliveryRow), DeliveryRow.clean(DeliveryRow.to_item(delivery, now)),
                               unique_key=DeliveryRow.hash_key)

    def save_delivery(self, delivery: Delivery, previous: Delivery) -> None:
        if delivery == previous:
            return
        try:
            utils_db.update_db_record(
                table=self._table(DeliveryRow),
                key={DeliveryRow.hash_key: delivery.id},
                update_body=DeliveryRow.to_item(delivery, now_iso()),
                allowed_attrs_to_update=DeliveryRow.update_fields_whitelist(),
                allowed_attrs_to_delete=DeliveryRow.allowed_attrs_to_delete,
                expected={'status': previous.status}
            )
        except ClientError as error:
            if _condition_failed(error):
                logger.warning(f'save_delivery ::: {delivery.id=} left status {previous.status} meanwhile')
                raise StateConflict('delivery was changed by another request') from error
            raise

    def list_customers(self) -> List[Customer]:
        return [CustomerRow.to_customer(item) for item in utils_db.scan_items_paged(self._table(CustomerRow))]

    def save_customer(self, customer: Customer, previous: Optional[Customer]) -> None:
        if previous is None:
            utils_db.put_db_record(self._table(CustomerRow), CustomerRow.clean(CustomerRow.to_item(customer)))
            return
        if customer == previous:
            return
        utils_db.update_db_record(
            table=self._table(CustomerRow),
            key={CustomerRow.hash_key: customer.id},
            update_body=CustomerRow.to_item(customer),
            allowed_attrs_to_update=CustomerRow.update_fields_whitelist(),
            allowed_attrs_to_delete=CustomerRow.allowed_attrs_to_delete
        )


class DynamoStore(DeliveryStore):
    """
    Store over the users, courier_profiles, business_profiles, deliveries and customers tables.
    Table names come from the environment, see keys_structure
    """
    default_manager_access = MANAGER_ACCESS_STRICT

    def __init__(self, table_factory: Callable = None, sleep: Callable[[float], None] = time.sleep, **kwargs):
        super().__init__(**kwargs)
        self._table_factory = table_factory or utils_db.get_table
        self._sleep = sleep

    @contextmanager
    def session(self, read_only: bool = False):
        yield DynamoSession(self._table_factory)

    def login(self, phone: str, password: str) -> User:
        """
        Transient storage failures are retried with a growing pause, anything else is raised at once
        """
        last_error = None
        for attempt in range(1, LOGIN_MAX_ATTEMPTS + 1):
            try:
                return super().login(phone, password)
            except TransientStorageFailure as error:
                last_error = error
                logger.warning(f'login ::: attempt {attempt}/{LOGIN_MAX_ATTEMPTS} failed: {error}')
                if attempt < LOGIN_MAX_ATTEMPTS:
                    self._sleep(attempt * LOGIN_RETRY_DELAY_SECONDS)
        raise StorageFailed(f'login failed after {LOGIN_MAX_ATTEMPTS} attempts') from last_error
