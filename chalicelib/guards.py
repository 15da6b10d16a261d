from typing import Callable, Iterable, Optional

from chalicelib.constants.constants import (
    ROLE_MANAGER, ROLE_BUSINESS, ROLE_COURIER, MANAGER_ACCESS_STRICT, MANAGER_ACCESS_FALLBACK
)
from chalicelib.models import User
from chalicelib.utils.exceptions import AccessDenied, ValidationException
from chalicelib.utils.logger import logger

ROLE_DENIED_MESSAGES = {
    ROLE_MANAGER: 'only managers can perform this operation',
    ROLE_BUSINESS: 'only businesses can perform this operation',
    ROLE_COURIER: 'only couriers can perform this operation',
}


def assert_role(user: Optional[User], role: str) -> User:
    if user is None:
        raise AccessDenied('actor not found, sign in again')
    if user.role != role:
        logger.warning(f'assert_role ::: {user.id=} with role={user.role} tried a {role} operation')
        raise AccessDenied(ROLE_DENIED_MESSAGES.get(role, f'only {role} can perform this operation'))
    return user


def strict_manager(actor: Optional[User], list_users: Callable[[], Iterable[User]]) -> User:
    return assert_role(actor, ROLE_MANAGER)


def fallback_manager(actor: Optional[User], list_users: Callable[[], Iterable[User]]) -> User:
    """
    Unknown or non-manager actor is replaced by any existing manager,
    the call fails only when there is no manager at all
    """
    if actor is not None and actor.role == ROLE_MANAGER:
        return actor
    manager = next((user for user in list_users() if user.role == ROLE_MANAGER), None)
    if manager is None:
        raise AccessDenied('no manager available to perform this operation')
    logger.warning(f'fallback_manager ::: actor={actor.id if actor else None} '
                   f'is not a manager, acting as {manager.id=}')
    return manager


MANAGER_ACCESS_POLICIES = {
    MANAGER_ACCESS_STRICT: strict_manager,
    MANAGER_ACCESS_FALLBACK: fallback_manager,
}


def get_manager_access(policy: str) -> Callable:
    if policy not in MANAGER_ACCESS_POLICIES:
        raise ValidationException(f'unknown manager access policy {policy!r}, '
                                  f'expected one of {sorted(MANAGER_ACCESS_POLICIES)}')
    return MANAGER_ACCESS_POLICIES[policy]


class CredentialVerifier:
    """
    Decides whether a password matches the stored credential of a user
    """

    def verify(self, user: User, password: str) -> bool:
        raise NotImplementedError


class PlaintextCredentials(CredentialVerifier):
    """
    Passwords are stored as typed, compared verbatim
    """

    def verify(self, user: User, password: str) -> bool:
        return user.password == password
