"""Role derivation from subscription status.

Pure domain function, no DB access.
"""

from enum import StrEnum


class UserRole(StrEnum):
    USER = "USER"
    PREMIUM = "PREMIUM"
    ADMIN = "ADMIN"


PRIVILEGED_STATUSES = frozenset({"active", "on_trial"})
BASE_STATUSES = frozenset({"cancelled", "expired"})


def role_for_status(status: str | None, current_role: str | None) -> str | None:
    """Return the role a user should hold after ``status`` is applied.

    active / on_trial grant PREMIUM, cancelled / expired drop to USER. Any other
    status (paused, past_due, unpaid, unknown) keeps ``current_role``. ADMIN is not
    special-cased: a subscription status moves an admin like any other user.
    """
    if status in PRIVILEGED_STATUSES:
        return UserRole.PREMIUM.value
    if status in BASE_STATUSES:
        return UserRole.USER.value
    return current_role
