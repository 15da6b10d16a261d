# Roles
ROLE_MANAGER = 'manager'
ROLE_BUSINESS = 'business'
ROLE_COURIER = 'courier'
ROLES = (ROLE_MANAGER, ROLE_BUSINESS, ROLE_COURIER)

# Delivery statuses
STATUS_WAITING = 'waiting'
STATUS_TAKEN = 'taken'
STATUS_COMPLETED = 'completed'
DELIVERY_STATUSES = (STATUS_WAITING, STATUS_TAKEN, STATUS_COMPLETED)

PHONE_MIN_DIGITS = 9
MIN_COURIER_AGE = 18
MIN_PASSWORD_LENGTH = 4

DELIVERY_PAYMENT = 25
DEFAULT_ETA_MINUTES = 15

# Manager access policies
MANAGER_ACCESS_STRICT = 'strict'
MANAGER_ACCESS_FALLBACK = 'fallback'

LOGIN_MAX_ATTEMPTS = 3
LOGIN_RETRY_DELAY_SECONDS = 1

EVENT_QUEUE_SIZE = 256

STORE_FILE_NAME = 'store.json'
STORE_BACKUP_FILE_NAME = 'store.backup.json'
