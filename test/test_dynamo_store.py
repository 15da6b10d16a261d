from decimal import Decimal

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from chalicelib import backends
from chalicelib.dynamo_store import DynamoStore, DynamoSession
from chalicelib.file_store import FileStore
from chalicelib.rows import UserRow, CourierProfileRow, BusinessProfileRow, DeliveryRow, PhoneClaimRow
from chalicelib.utils.exceptions import (
    AccessDenied, InvalidCredentials, StateConflict, StorageFailed, NumberOfRetriesExceeded, UpstreamUnavailable, TransientStorageFailure,
    ValidationException
)

from test.utils.fake_dynamo import fake_tables
from test.utils.fixtures import dynamo_tables, dynamo_store, recorded_sleeps, seed_manager
from test.utils.store_data import ROOT_MANAGER_ID, register_business, register_courier, create_delivery


def test_courier_is_split_into_user_and_profile_rows(dynamo_store, dynamo_tables):
    courier = register_courier(dynamo_store)

    user_item = dynamo_tables[UserRow.table_env].items[courier.id]
    profile_item = dynamo_tables[CourierProfileRow.table_env].items[courier.id]
    assert user_item['role'] == 'courier'
    assert user_item['phone'] == '0531112233'
    assert 'created_at' in user_item
    assert profile_item['age'] == Decimal(25)
    assert profile_item['is_available'] is False
    assert courier.id not in dynamo_tables[BusinessProfileRow.table_env].items

    assert dynamo_store.get_user(courier.id) == courier
    assert courier in dynamo_store.get_users()


def test_failed_profile_insert_removes_user_row(dynamo_store, dynamo_tables):
    dynamo_tables[BusinessProfileRow.table_env].fail_next('put_item')

    with pytest.raises(StorageFailed):
        register_business(dynamo_store)

    assert [item['id'] for item in dynamo_tables[UserRow.table_env].items.values()] == [ROOT_MANAGER_ID]
    assert 'delete_item' in dynamo_tables[UserRow.table_env].calls
    assert dynamo_tables[PhoneClaimRow.table_env].items == {}


def test_strict_policy_rejects_non_manager(dynamo_store):
    business = register_business(dynamo_store)
    with pytest.raises(AccessDenied):
        dynamo_store.register_courier(manager_id=business.id, name='Avi', age=25, phone='0531112233',
                                      email='avi@example.com', vehicle='scooter', password='courier1')
    with pytest.raises(AccessDenied):
        dynamo_store.register_courier(manager_id='manager-missing', name='Avi', age=25, phone='0531112233',
                                      email='avi@example.com', vehicle='scooter', password='courier1')


def test_login_retries_storage_failures(dynamo_store, dynamo_tables, recorded_sleeps):
    dynamo_tables[UserRow.table_env].fail_next('scan', times=2)

    user = dynamo_store.login('0500000000', '1234')

    assert user.id == ROOT_MANAGER_ID
    assert recorded_sleeps == [1, 2]


def test_login_gives_up_after_three_attempts(dynamo_store, dynamo_tables, recorded_sleeps):
    dynamo_tables[UserRow.table_env].fail_next('scan', times=3)

    with pytest.raises(StorageFailed):
        dynamo_store.login('0500000000', '1234')
    assert recorded_sleeps == [1, 2]


def test_login_does_not_retry_permanent_failures(dynamo_store, dynamo_tables, recorded_sleeps):
    dynamo_tables[UserRow.table_env].fail_next('scan', code='AccessDeniedException')

    with pytest.raises(StorageFailed) as error:
        dynamo_store.login('0500000000', '1234')
    assert not isinstance(error.value, TransientStorageFailure)
    assert recorded_sleeps == []


def test_login_does_not_retry_wrong_password(dynamo_store, recorded_sleeps):
    with pytest.raises(InvalidCredentials):
        dynamo_store.login('+972500000000', 'wrong')
    assert recorded_sleeps == []


def test_throttled_calls_are_retried(dynamo_store, dynamo_tables):
    dynamo_tables[UserRow.table_env].fail_next('get_item', code='ThrottlingException', times=2)
    assert dynamo_store.get_user(ROOT_MANAGER_ID).id == ROOT_MANAGER_ID


def test_endless_throttling_exceeds_retries(dynamo_store, dynamo_tables):
    dynamo_tables[UserRow.table_env].fail_next('get_item', code='ThrottlingException', times=5)
    with pytest.raises(NumberOfRetriesExceeded):
        dynamo_store.get_user(ROOT_MANAGER_ID)


def test_stale_delivery_write_conflicts(dynamo_store):
    business = register_business(dynamo_store)
    first = register_courier(dynamo_store, phone='0531112233')
    second = register_courier(dynamo_store, phone='0531112244')
    delivery = create_delivery(dynamo_store, business.id)
    dynamo_store.courier_take_delivery(first.id, delivery.id)

    # a second request computed its update from the waiting delivery it read earlier
    with pytest.raises(StateConflict):
        with dynamo_store.session() as session:
            session.save_delivery(delivery.replace(status='taken', courier_id=second.id), delivery)

    stored = next(d for d in dynamo_store.get_deliveries() if d.id == delivery.id)
    assert stored.courier_id == first.id


def test_cleared_fields_are_removed_from_rows(dynamo_store, dynamo_tables):
    business = register_business(dynamo_store)
    courier = register_courier(dynamo_store)
    delivery = create_delivery(dynamo_store, business.id)
    dynamo_store.courier_take_delivery(courier.id, delivery.id, estimated_arrival_minutes=5)
    dynamo_store.business_confirm_delivery(business.id, delivery.id)

    dynamo_store.manager_update_delivery(ROOT_MANAGER_ID, delivery.id, status='waiting')

    item = dynamo_tables[DeliveryRow.table_env].items[delivery.id]
    assert item['status'] == 'waiting'
    assert 'courier_id' not in item
    assert 'confirmed_at' not in item
    assert item['business_confirmed'] is False
    assert item['estimated_arrival_minutes'] == Decimal(5)


def test_location_is_stored_as_decimals(dynamo_store, dynamo_tables):
    courier = register_courier(dynamo_store)

    updated = dynamo_store.courier_update_location(courier.id, 32.0853, 34.7818)

    profile_item = dynamo_tables[CourierProfileRow.table_env].items[courier.id]
    assert profile_item['current_latitude'] == Decimal('32.0853')
    assert dynamo_store.get_user(courier.id).courier_profile.current_location == \
        updated.courier_profile.current_location


def test_paged_scans_return_every_row():
    tables = fake_tables(page_size=2)
    seed_manager(tables)
    store = DynamoStore(table_factory=lambda env: tables[env], sleep=lambda seconds: None)
    for index in range(5):
        register_courier(store, phone=f'05311122{index:02d}')
    assert len(store.get_users()) == 6
    store.close()


def test_malformed_row_is_a_storage_failure(dynamo_store, dynamo_tables):
    dynamo_tables[UserRow.table_env].put_item(Item={'id': 'broken', 'name': 'Broken', 'role': 'pilot'})
    with pytest.raises(StorageFailed):
        dynamo_store.get_users()


def test_missing_table_configuration(monkeypatch):
    monkeypatch.delenv(UserRow.table_env, raising=False)
    store = DynamoStore()
    with pytest.raises(UpstreamUnavailable):
        store.get_users()
    store.close()


def test_build_store_follows_environment(monkeypatch, tmp_path):
    monkeypatch.setenv('STORE_BACKEND', 'file')
    monkeypatch.setenv('STORE_DATA_DIR', str(tmp_path))
    monkeypatch.delenv('MANAGER_ACCESS_POLICY', raising=False)
    store = backends.build_store()
    assert isinstance(store, FileStore)
    assert store.manager_access_policy == 'fallback'
    store.close()

    monkeypatch.setenv('STORE_BACKEND', 'dynamodb')
    monkeypatch.setenv('MANAGER_ACCESS_POLICY', 'fallback')
    store = backends.build_store()
    assert isinstance(store, DynamoStore)
    assert store.manager_access_policy == 'fallback'
    store.close()

    monkeypatch.setenv('STORE_BACKEND', 'postgres')
    with pytest.raises(ValidationException):
        backends.build_store()


def test_registered_phone_is_claimed(dynamo_store, dynamo_tables):
    business = register_business(dynamo_store, phone='0521112233')

    claims = dynamo_tables[PhoneClaimRow.table_env].items
    assert claims == {'521112233': {'phone_key': '521112233', 'user_id': business.id}}

    dynamo_store.manager_update_user(ROOT_MANAGER_ID, business.id, phone='+972521119999')
    assert list(claims) == ['521119999']
    assert dynamo_store.get_user(business.id).phone == '+972521119999'


def test_claimed_phone_conflicts(dynamo_store, dynamo_tables):
    courier = register_courier(dynamo_store, phone='0531112233')
    # the claim is enough to reject the phone, whatever the users table holds
    dynamo_tables[PhoneClaimRow.table_env].put_item(Item=PhoneClaimRow.to_item('0541112233', 'someone-else'))

    with pytest.raises(StateConflict):
        register_business(dynamo_store, phone='+972541112233')
    with pytest.raises(StateConflict):
        dynamo_store.manager_update_user(ROOT_MANAGER_ID, courier.id, phone='0541112233')

    assert dynamo_store.get_user(courier.id).phone == '0531112233'
    assert dynamo_tables[PhoneClaimRow.table_env].items['531112233']['user_id'] == courier.id


def test_concurrent_registrations_of_one_phone(dynamo_store, monkeypatch):
    barrier = threading.Barrier(2, timeout=5)
    list_users = DynamoSession.list_users

    def list_users_together(session):
        users = list_users(session)
        barrier.wait()
        return users

    # both registrations see the phone as free before either of them writes
    monkeypatch.setattr(DynamoSession, 'list_users', list_users_together)

    def register(name):
        try:
            return dynamo_store.register_business(manager_id=ROOT_MANAGER_ID, name=name, address='Herzl 1',
                                                  phone='0521112222', email=f'{name}@example.com', password='pizza1')
        except StateConflict as conflict:
            return conflict

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(register, ['first', 'second']))
    monkeypatch.undo()

    assert sorted(type(result).__name__ for result in results) == ['StateConflict', 'User']
    same_phone = [user for user in dynamo_store.get_users() if user.phone == '0521112222']
    assert len(same_phone) == 1
