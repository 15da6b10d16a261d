"""
Delivery status rules.

waiting -> taken -> completed. While a delivery is taken the business confirms it,
marks it ready and the courier picks it up, in that order.
Every function takes the current delivery and returns the next one, nothing is stored here.
"""
import uuid
from typing import Optional

from chalicelib.constants.constants import (
    STATUS_WAITING, STATUS_TAKEN, STATUS_COMPLETED, DELIVERY_STATUSES, DELIVERY_PAYMENT, DEFAULT_ETA_MINUTES
)
from chalicelib.models import Delivery
from chalicelib.utils.exceptions import AccessDenied, StateConflict, ValidationException

UNSET = object()


def new_delivery(business_id: str, pickup_address: str, dropoff_address: str, customer_name: str,
                 customer_phone: str, created_at: str, notes: str = '',
                 preparation_time_minutes: Optional[int] = None, distance_km: Optional[float] = None) -> Delivery:
    return Delivery(
        id=f'delivery-{uuid.uuid4().hex[:12]}',
        business_id=business_id,
        courier_id=None,
        pickup_address=pickup_address,
        dropoff_address=dropoff_address,
        notes=notes or '',
        status=STATUS_WAITING,
        created_at=created_at,
        preparation_time_minutes=preparation_time_minutes,
        customer_name=customer_name,
        customer_phone=customer_phone,
        payment=DELIVERY_PAYMENT,
        distance_km=distance_km
    )


def is_repeated_take(delivery: Delivery, courier_id: str) -> bool:
    return delivery.status == STATUS_TAKEN and delivery.courier_id == courier_id


def take(delivery: Delivery, courier_id: str, estimated_arrival_minutes: Optional[int]) -> Delivery:
    if is_repeated_take(delivery, courier_id):
        return delivery
    if delivery.status != STATUS_WAITING:
        raise StateConflict('delivery is not waiting for a courier')
    return delivery.replace(
        status=STATUS_TAKEN,
        courier_id=courier_id,
        estimated_arrival_minutes=estimated_arrival_minutes,
        payment=DELIVERY_PAYMENT if delivery.payment is None else delivery.payment
    )


def confirm(delivery: Delivery, business_id: str, now: str) -> Delivery:
    if delivery.business_id != business_id:
        raise AccessDenied('delivery belongs to another business')
    if delivery.status != STATUS_TAKEN:
        raise StateConflict('delivery must be taken before it is confirmed')
    if not delivery.courier_id:
        raise StateConflict('delivery has no courier assigned')
    return delivery.replace(
        business_confirmed=True,
        confirmed_at=now,
        estimated_arrival_minutes=delivery.estimated_arrival_minutes or DEFAULT_ETA_MINUTES
    )


def mark_ready(delivery: Delivery, business_id: str) -> Delivery:
    if delivery.business_id != business_id:
        raise AccessDenied('delivery belongs to another business')
    if delivery.status != STATUS_TAKEN:
        raise StateConflict('delivery must be taken before it is ready')
    if not delivery.business_confirmed:
        raise StateConflict('delivery must be confirmed before it is ready')
    return delivery.replace(business_ready=True)


def pick_up(delivery: Delivery, courier_id: str, now: str) -> Delivery:
    if delivery.courier_id != courier_id:
        raise AccessDenied('delivery is assigned to another courier')
    if delivery.status != STATUS_TAKEN:
        raise StateConflict('delivery must be taken before pick up')
    if not delivery.business_ready:
        raise StateConflict('delivery must be ready before pick up')
    return delivery.replace(picked_up_at=now)


def complete(delivery: Delivery, courier_id: str, now: str) -> Delivery:
    if delivery.courier_id != courier_id:
        raise AccessDenied('delivery is assigned to another courier')
    if delivery.status != STATUS_TAKEN:
        raise StateConflict('delivery must be taken before it is completed')
    if not delivery.picked_up_at:
        raise StateConflict('delivery must be picked up first')
    return delivery.replace(
        status=STATUS_COMPLETED,
        completed_at=now,
        business_ready=False,
        business_confirmed=False
    )


def override(delivery: Delivery, now: str, status=UNSET, courier_id=UNSET) -> Delivery:
    """
    Manager forces status and/or courier. UNSET leaves the field as it is, None clears the courier
    """
    next_status = delivery.status if status is UNSET else status
    next_courier = delivery.courier_id if courier_id is UNSET else (courier_id or None)

    if next_status not in DELIVERY_STATUSES:
        raise ValidationException(f'unknown delivery status {next_status!r}')

    if next_status == STATUS_WAITING:
        return delivery.replace(
            status=STATUS_WAITING,
            courier_id=None,
            business_confirmed=False,
            confirmed_at=None,
            business_ready=False,
            picked_up_at=None,
            completed_at=None
        )

    if next_courier is None:
        raise ValidationException(f'delivery with status {next_status} needs a courier')

    changes = {'status': next_status, 'courier_id': next_courier}
    first_assignment = delivery.courier_id is None and delivery.status == STATUS_WAITING
    if first_assignment and next_status == STATUS_TAKEN and delivery.estimated_arrival_minutes is None:
        changes['estimated_arrival_minutes'] = DEFAULT_ETA_MINUTES
    if next_status == STATUS_COMPLETED and delivery.status != STATUS_COMPLETED:
        changes.update(completed_at=now, business_ready=False, business_confirmed=False)
    return delivery.replace(**changes)
