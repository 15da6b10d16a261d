from chalice import Response
from chalice.app import Request

from chalicelib.constants.status_codes import http200, http201
from chalicelib.store import DeliveryStore, UNSET
from chalicelib.utils import app as utils_app, data as utils_data
from chalicelib.utils.exceptions import ValidationException


def _body(request: Request, *required) -> dict:
    body = utils_data.parse_raw_body(request)
    missing = [key for key in required if body.get(key) in (None, '')]
    if missing:
        raise ValidationException(f'missing fields: {", ".join(missing)}')
    return body


def _user_response(user, status_code=http200) -> Response:
    return Response(status_code=status_code, body={'user': user.to_ui()})


def _delivery_response(delivery, status_code=http200) -> Response:
    return Response(status_code=status_code, body={'delivery': delivery.to_dict()})


# AUTH
@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_login(store: DeliveryStore, request: Request) -> Response:
    body = _body(request, 'phone', 'password')
    return _user_response(store.login(body['phone'], body['password']))


# USERS
@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_get_users(store: DeliveryStore) -> Response:
    return Response(status_code=http200, body={'users': [user.to_ui() for user in store.get_users()]})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_get_available_couriers(store: DeliveryStore) -> Response:
    couriers = store.get_available_couriers_with_tokens()
    return Response(status_code=http200, body={'couriers': [courier.to_ui() for courier in couriers]})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_register_push_token(store: DeliveryStore, request: Request, user_id: str) -> Response:
    body = _body(request, 'pushToken')
    return _user_response(store.register_push_token(user_id, body['pushToken']))


# MANAGER
@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_register_courier(store: DeliveryStore, request: Request) -> Response:
    body = _body(request, 'managerId')
    courier = store.register_courier(
        manager_id=body['managerId'],
        name=body.get('name'),
        age=body.get('age'),
        phone=body.get('phone'),
        email=body.get('email'),
        vehicle=body.get('vehicle'),
        password=body.get('password'),
        id_number=body.get('idNumber')
    )
    return _user_response(courier, http201)


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_register_business(store: DeliveryStore, request: Request) -> Response:
    body = _body(request, 'managerId')
    business = store.register_business(
        manager_id=body['managerId'],
        name=body.get('name'),
        address=body.get('address'),
        phone=body.get('phone'),
        email=body.get('email'),
        password=body.get('password')
    )
    return _user_response(business, http201)


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_register_manager(store: DeliveryStore, request: Request) -> Response:
    body = _body(request, 'managerId')
    manager = store.register_manager(
        manager_id=body['managerId'],
        name=body.get('name'),
        phone=body.get('phone'),
        email=body.get('email'),
        password=body.get('password')
    )
    return _user_response(manager, http201)


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_update_user(store: DeliveryStore, request: Request, user_id: str) -> Response:
    body = _body(request, 'managerId')
    user = store.manager_update_user(
        manager_id=body['managerId'],
        user_id=user_id,
        name=body.get('name'),
        phone=body.get('phone'),
        email=body.get('email'),
        password=body.get('password'),
        courier_profile=body.get('courierProfile'),
        business_profile=body.get('businessProfile')
    )
    return _user_response(user)


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_update_delivery(store: DeliveryStore, request: Request, delivery_id: str) -> Response:
    """
    status and courierId are applied only when present in the body, "courierId": null unassigns
    """
    body = _body(request, 'managerId')
    delivery = store.manager_update_delivery(
        manager_id=body['managerId'],
        delivery_id=delivery_id,
        status=body['status'] if 'status' in body else UNSET,
        courier_id=body['courierId'] if 'courierId' in body else UNSET
    )
    return _delivery_response(delivery)


# DELIVERIES
@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_get_deliveries(store: DeliveryStore) -> Response:
    deliveries = store.get_deliveries()
    return Response(status_code=http200, body={'deliveries': [delivery.to_dict() for delivery in deliveries]})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_create_delivery(store: DeliveryStore, request: Request) -> Response:
    body = _body(request, 'businessId')
    delivery = store.create_delivery(
        business_id=body['businessId'],
        pickup_address=body.get('pickupAddress'),
        dropoff_address=body.get('dropoffAddress'),
        customer_name=body.get('customerName'),
        customer_phone=body.get('customerPhone'),
        preparation_time_minutes=body.get('preparationTimeMinutes'),
        notes=body.get('notes') or '',
        customer_city=body.get('customerCity'),
        customer_floor=body.get('customerFloor')
    )
    return _delivery_response(delivery, http201)


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_confirm_delivery(store: DeliveryStore, request: Request, delivery_id: str) -> Response:
    body = _body(request, 'businessId')
    return _delivery_response(store.business_confirm_delivery(body['businessId'], delivery_id))


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_mark_ready(store: DeliveryStore, request: Request, delivery_id: str) -> Response:
    body = _body(request, 'businessId')
    return _delivery_response(store.business_mark_ready(body['businessId'], delivery_id))


# COURIER
@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_take_delivery(store: DeliveryStore, request: Request, delivery_id: str) -> Response:
    body = _body(request, 'courierId')
    delivery = store.courier_take_delivery(
        courier_id=body['courierId'],
        delivery_id=delivery_id,
        estimated_arrival_minutes=body.get('estimatedArrivalMinutes')
    )
    return _delivery_response(delivery)


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_pickup_delivery(store: DeliveryStore, request: Request, delivery_id: str) -> Response:
    body = _body(request, 'courierId')
    return _delivery_response(store.courier_pickup_delivery(body['courierId'], delivery_id))


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_complete_delivery(store: DeliveryStore, request: Request, delivery_id: str) -> Response:
    body = _body(request, 'courierId')
    return _delivery_response(store.courier_complete_delivery(body['courierId'], delivery_id))


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_update_availability(store: DeliveryStore, request: Request, courier_id: str) -> Response:
    body = _body(request, 'isAvailable')
    return _user_response(store.courier_update_availability(courier_id, body['isAvailable']))


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_update_location(store: DeliveryStore, request: Request, courier_id: str) -> Response:
    body = _body(request, 'latitude', 'longitude')
    return _user_response(store.courier_update_location(courier_id, body['latitude'], body['longitude']))


# CUSTOMERS
@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_get_customer(store: DeliveryStore, phone: str) -> Response:
    customer = store.get_customer_by_phone(phone)
    return Response(status_code=http200, body={'customer': customer.to_dict() if customer else None})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_save_customer(store: DeliveryStore, request: Request) -> Response:
    body = _body(request, 'phone', 'name')
    customer = store.save_customer(
        phone=body['phone'],
        name=body['name'],
        address=body.get('address'),
        city=body.get('city'),
        floor=body.get('floor'),
        notes=body.get('notes'),
        business_id=body.get('businessId')
    )
    return Response(status_code=http200, body={'customer': customer.to_dict()})
