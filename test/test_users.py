import pytest

from chalicelib.events import EventType
from chalicelib.utils.exceptions import (
    AccessDenied, InvalidCredentials, RecordNotFound, StateConflict, ValidationException
)

from test.utils.fixtures import store, file_store
from test.utils.store_data import ROOT_MANAGER_ID, register_business, register_courier, collect_events


def test_login_accepts_local_and_international_spelling(store):
    courier = store.register_courier(manager_id=ROOT_MANAGER_ID, name='Yossi', age=30, phone='0501234567',
                                     email='yossi@example.com', vehicle='bicycle', password='secret')

    assert store.login('+972501234567', 'secret').id == courier.id
    assert store.login('050-123-4567', 'secret').id == courier.id


def test_login_failures(store):
    with pytest.raises(ValidationException):
        store.login('123', '1234')
    with pytest.raises(InvalidCredentials):
        store.login('+972500000000', 'wrong')
    with pytest.raises(InvalidCredentials):
        store.login('0599999999', '1234')


def test_registration_publishes_user_created(store, request):
    subscription, received = collect_events(store, request)

    business = register_business(store)

    assert subscription.join(timeout=5)
    assert [event.type for event in received] == [EventType.USER_CREATED]
    assert received[0].entity == business
    assert business.email == 'pizza@example.com'
    assert business.business_profile.address == 'Herzl 1, Tel Aviv'
    assert 'password' not in business.to_ui()


def test_registered_courier_starts_unavailable(store):
    courier = register_courier(store)
    assert courier.role == 'courier'
    assert courier.courier_profile.is_available is False
    assert courier.courier_profile.vehicle == 'scooter'


def test_registration_rejects_taken_phone(store):
    register_courier(store, phone='0531112233')
    with pytest.raises(StateConflict):
        register_business(store, phone='+972531112233')


@pytest.mark.parametrize('overrides', [
    {'age': 17},
    {'age': '25'},
    {'phone': '1234'},
    {'password': 'abc'},
    {'name': '  '},
    {'vehicle': None},
])
def test_courier_registration_validation(store, overrides):
    fields = {'manager_id': ROOT_MANAGER_ID, 'name': 'Avi', 'age': 25, 'phone': '0531112233',
              'email': 'avi@example.com', 'vehicle': 'scooter', 'password': 'courier1', **overrides}
    with pytest.raises(ValidationException):
        store.register_courier(**fields)


def test_register_manager(store):
    manager = store.register_manager(manager_id=ROOT_MANAGER_ID, name='Second', phone='0547778899',
                                     email='second@example.com', password='manager1')
    assert manager.role == 'manager'
    assert store.get_user(manager.id) == manager


def test_fallback_policy_acts_as_existing_manager(file_store):
    business = register_business(file_store)
    courier = file_store.register_courier(manager_id=business.id, name='Avi', age=25, phone='0531112233',
                                          email='avi@example.com', vehicle='scooter', password='courier1')
    assert file_store.get_user(courier.id) == courier


def test_manager_update_user(store, request):
    courier = register_courier(store)
    subscription, received = collect_events(store, request)

    updated = store.manager_update_user(
        manager_id=ROOT_MANAGER_ID,
        user_id=courier.id,
        name='Avi Levi',
        phone='+972 53 111 2299',
        password='',
        courier_profile={'age': 31, 'vehicle': 'car', 'idNumber': '123456789'}
    )

    assert updated.name == 'Avi Levi'
    assert updated.phone == '+972531112299'
    assert updated.password == courier.password
    assert updated.courier_profile.age == 31
    assert updated.courier_profile.vehicle == 'car'
    assert updated.courier_profile.id_number == '123456789'
    assert updated.courier_profile.email == courier.courier_profile.email
    assert store.get_user(courier.id) == updated
    assert subscription.join(timeout=5)
    assert [event.type for event in received] == [EventType.USER_UPDATED]


def test_manager_update_user_validation(store):
    courier = register_courier(store)
    business = register_business(store)

    with pytest.raises(StateConflict):
        store.manager_update_user(ROOT_MANAGER_ID, courier.id, phone='0521112233')
    with pytest.raises(ValidationException):
        store.manager_update_user(ROOT_MANAGER_ID, courier.id, phone='12')
    with pytest.raises(ValidationException):
        store.manager_update_user(ROOT_MANAGER_ID, courier.id, password='abc')
    with pytest.raises(ValidationException):
        store.manager_update_user(ROOT_MANAGER_ID, courier.id, courier_profile={'age': 16})
    with pytest.raises(RecordNotFound):
        store.manager_update_user(ROOT_MANAGER_ID, 'courier-missing', name='Nobody')

    # own phone is not a conflict
    assert store.manager_update_user(ROOT_MANAGER_ID, business.id, phone='+972521112233').id == business.id


def test_manager_update_business_profile(store):
    business = register_business(store)
    updated = store.manager_update_user(ROOT_MANAGER_ID, business.id, business_profile={'address': 'Allenby 5'})
    assert updated.business_profile.address == 'Allenby 5'
    assert updated.business_profile.email == 'pizza@example.com'


def test_availability(store, request):
    courier = register_courier(store)
    subscription, received = collect_events(store, request)

    assert store.courier_update_availability(courier.id, True).is_available
    store.courier_update_availability(courier.id, True)

    assert subscription.join(timeout=5)
    assert [event.type for event in received] == [EventType.USER_UPDATED]
    assert store.get_user(courier.id).is_available

    with pytest.raises(ValidationException):
        store.courier_update_availability(courier.id, 'yes')
    with pytest.raises(AccessDenied):
        store.courier_update_availability(ROOT_MANAGER_ID, True)


def test_available_couriers_need_a_push_token(store):
    with_token = register_courier(store, phone='0531112233', name='Avi')
    without_token = register_courier(store, phone='0531112244', name='Dana')
    register_courier(store, phone='0531112255', name='Eli')
    for courier in (with_token, without_token):
        store.courier_update_availability(courier.id, True)
    store.register_push_token(with_token.id, 'ExponentPushToken[abc]')

    assert [courier.id for courier in store.get_available_couriers_with_tokens()] == [with_token.id]


def test_push_token_registration(store, request):
    subscription, received = collect_events(store, request)

    user = store.register_push_token(ROOT_MANAGER_ID, 'ExponentPushToken[abc]')
    assert store.register_push_token(ROOT_MANAGER_ID, 'ExponentPushToken[abc]') == user

    assert store.get_user(ROOT_MANAGER_ID).push_token == 'ExponentPushToken[abc]'
    assert subscription.join(timeout=5)
    assert received == []
    with pytest.raises(RecordNotFound):
        store.register_push_token('nobody', 'token')
    with pytest.raises(ValidationException):
        store.register_push_token(ROOT_MANAGER_ID, ' ')


def test_courier_location(store):
    courier = register_courier(store)

    updated = store.courier_update_location(courier.id, 32.0853, 34.7818)

    location = store.get_user(courier.id).courier_profile.current_location
    assert location == updated.courier_profile.current_location
    assert (location.latitude, location.longitude) == (32.0853, 34.7818)
    assert location.updated_at.endswith('Z')
    with pytest.raises(ValidationException):
        store.courier_update_location(courier.id, 91, 34.7818)
    with pytest.raises(ValidationException):
        store.courier_update_location(courier.id, 32.0853, 'east')


def test_customers(store):
    assert store.get_customer_by_phone('') is None
    assert store.get_customer_by_phone('0541234567') is None

    saved = store.save_customer(phone='054-123-4567', name='Noa', address='Dizengoff 100', city='Tel Aviv')
    again = store.save_customer(phone='+972541234567', name='Noa Cohen', floor='3')

    assert again.id == saved.id
    assert again.created_at == saved.created_at
    assert again.address is None
    found = store.get_customer_by_phone('+972 54 123 4567')
    assert found == again
    assert found.name == 'Noa Cohen'
    with pytest.raises(ValidationException):
        store.save_customer(phone='12', name='Noa')
