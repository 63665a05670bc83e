"""Operator / admin identity checks.

Identities are compared in checksummed form, so callers may pass any
capitalization of an address.
"""

from __future__ import annotations

from collections.abc import Iterable

from eth_utils import is_address, to_checksum_address

from dust_consolidator.core.exceptions import UnauthorizedError, ValidationError


def normalize_address(address: str, field: str = "address") -> str:
    """Checksum ``address``.

    Raises:
        ValidationError: If ``address`` is not a 20-byte hex address.
    """
    if not isinstance(address, str) or not is_address(address):
        raise ValidationError(f"invalid address: {address!r}", field=field, value=address)
    return to_checksum_address(address)


class AccessControl:
    """Admin identity plus a mutable set of authorized identities.

    The admin is always authorized; the authorized set may be empty.
    """

    def __init__(self, admin: str, authorized: Iterable[str] = ()) -> None:
        self._admin = normalize_address(admin, "admin")
        self._authorized = {normalize_address(a, "authorized") for a in authorized}

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def authorized(self) -> frozenset[str]:
        return frozenset(self._authorized)

    def is_authorized(self, caller: str | None) -> bool:
        if not caller or not is_address(caller):
            return False
        caller = to_checksum_address(caller)
        return caller == self._admin or caller in self._authorized

    def require(self, caller: str | None, action: str) -> str:
        """Return the checksummed caller or raise UnauthorizedError."""
        if not self.is_authorized(caller):
            raise UnauthorizedError(f"caller not authorized to {action}", caller=caller)
        return to_checksum_address(caller)

    def require_admin(self, caller: str | None, action: str) -> str:
        if not caller or not is_address(caller) or to_checksum_address(caller) != self._admin:
            raise UnauthorizedError(f"only the admin may {action}", caller=caller)
        return self._admin

    def set_authorized(self, address: str, allowed: bool) -> None:
        address = normalize_address(address)
        if allowed:
            self._authorized.add(address)
        else:
            self._authorized.discard(address)
