import os

from chalicelib.dynamo_store import DynamoStore
from chalicelib.file_store import FileStore
from chalicelib.store import DeliveryStore
from chalicelib.utils.exceptions import ValidationException
from chalicelib.utils.logger import logger

BACKENDS = {
    'file': FileStore,
    'dynamodb': DynamoStore,
}


def build_store(**kwargs) -> DeliveryStore:
    """
    STORE_BACKEND picks the backend, MANAGER_ACCESS_POLICY overrides its default manager access
    """
    backend = os.environ.get('STORE_BACKEND', 'file').lower()
    if backend not in BACKENDS:
        raise ValidationException(f'unknown STORE_BACKEND {backend!r}, expected one of {sorted(BACKENDS)}')
    kwargs.setdefault('manager_access', os.environ.get('MANAGER_ACCESS_POLICY') or None)
    logger.info(f'build_store ::: {backend=} manager_access={kwargs["manager_access"]}')
    return BACKENDS[backend](**kwargs)
