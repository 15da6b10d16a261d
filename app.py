from chalice import Chalice

from chalicelib import backends, endpoints
from chalicelib.utils.logger import log_request, set_request_id

app = Chalice(app_name='courier-dispatch')

app.debug = True

# one store per process, handed to every endpoint
store = backends.build_store()


@app.middleware('http')
def inject_request_id(event, get_response):
    set_request_id(event.context.get('requestId'))
    log_request(event)
    return get_response(event)


@app.route('/health-check', methods=['GET'], cors=True)
def health_check():
    return {'health': 'check'}


# AUTH
@app.route('/auth/login', methods=['POST'], cors=True)
def login():
    return endpoints.endpoint_login(store, app.current_request)


# USERS
@app.route('/users', methods=['GET'], cors=True)
def get_users():
    """
    couriers without availability report isAvailable false
    """
    return endpoints.endpoint_get_users(store)


@app.route('/users/{user_id}/push-token', methods=['PUT'], cors=True)
def register_push_token(user_id):
    return endpoints.endpoint_register_push_token(store, app.current_request, user_id)


@app.route('/couriers/available', methods=['GET'], cors=True)
def get_available_couriers():
    """
    available couriers having a push token, the audience of new delivery notifications
    """
    return endpoints.endpoint_get_available_couriers(store)


# MANAGER
@app.route('/manager/couriers', methods=['POST'], cors=True)
def register_courier():
    return endpoints.endpoint_register_courier(store, app.current_request)


@app.route('/manager/businesses', methods=['POST'], cors=True)
def register_business():
    return endpoints.endpoint_register_business(store, app.current_request)


@app.route('/manager/managers', methods=['POST'], cors=True)
def register_manager():
    return endpoints.endpoint_register_manager(store, app.current_request)


@app.route('/manager/users/{user_id}', methods=['PUT'], cors=True)
def update_user(user_id):
    return endpoints.endpoint_update_user(store, app.current_request, user_id)


@app.route('/manager/deliveries/{delivery_id}', methods=['PUT'], cors=True)
def update_delivery(delivery_id):
    """
    manager operation, forces status and/or courier
    """
    return endpoints.endpoint_update_delivery(store, app.current_request, delivery_id)


# DELIVERIES
@app.route('/deliveries', methods=['GET'], cors=True)
def get_deliveries():
    return endpoints.endpoint_get_deliveries(store)


@app.route('/business/deliveries', methods=['POST'], cors=True)
def create_delivery():
    return endpoints.endpoint_create_delivery(store, app.current_request)


@app.route('/business/deliveries/{delivery_id}/confirm', methods=['POST'], cors=True)
def confirm_delivery(delivery_id):
    return endpoints.endpoint_confirm_delivery(store, app.current_request, delivery_id)


@app.route('/business/deliveries/{delivery_id}/ready', methods=['POST'], cors=True)
def mark_delivery_ready(delivery_id):
    return endpoints.endpoint_mark_ready(store, app.current_request, delivery_id)


# COURIER
@app.route('/courier/deliveries/{delivery_id}/take', methods=['POST'], cors=True)
def take_delivery(delivery_id):
    return endpoints.endpoint_take_delivery(store, app.current_request, delivery_id)


@app.route('/courier/deliveries/{delivery_id}/pickup', methods=['POST'], cors=True)
def pickup_delivery(delivery_id):
    return endpoints.endpoint_pickup_delivery(store, app.current_request, delivery_id)


@app.route('/courier/deliveries/{delivery_id}/complete', methods=['POST'], cors=True)
def complete_delivery(delivery_id):
    return endpoints.endpoint_complete_delivery(store, app.current_request, delivery_id)


@app.route('/courier/{courier_id}/availability', methods=['PUT'], cors=True)
def update_availability(courier_id):
    return endpoints.endpoint_update_availability(store, app.current_request, courier_id)


@app.route('/courier/{courier_id}/location', methods=['PUT'], cors=True)
def update_location(courier_id):
    return endpoints.endpoint_update_location(store, app.current_request, courier_id)


# CUSTOMERS
@app.route('/customers/{phone}', methods=['GET'], cors=True)
def get_customer(phone):
    return endpoints.endpoint_get_customer(store, phone)


@app.route('/customers', methods=['POST'], cors=True)
def save_customer():
    return endpoints.endpoint_save_customer(store, app.current_request)
