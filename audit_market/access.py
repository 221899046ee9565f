from __future__ import annotations

from audit_market.bank import is_market_account
from audit_market.errors import ReservedAccount, Unauthorized


def require_external(identity: str, *, role: str) -> None:
    """Reject identities that would address funds the market holds (escrow, fee pool)."""
    if is_market_account(identity):
        raise ReservedAccount(f"{role} {identity!r} names a market-held account")


class AccessControl:
    """Owner plus a mutable set of privileged identities.

    Gated operations call `require_owner` or `require_privileged` before they
    look at anything else. The owner is always privileged.
    """

    def __init__(self, owner: str, *, privileged: set[str] | None = None) -> None:
        if not owner or not owner.strip():
            raise ValueError("owner must be a non-empty identity")
        require_external(owner, role="owner")
        self._owner = owner
        self._privileged: set[str] = set(privileged or ())

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, identity: str) -> bool:
        return identity == self._owner

    def is_member(self, identity: str) -> bool:
        return identity in self._privileged

    def is_privileged(self, identity: str) -> bool:
        return identity == self._owner or identity in self._privileged

    def members(self) -> list[str]:
        return sorted(self._privileged)

    def require_owner(self, caller: str, *, action: str) -> None:
        if not self.is_owner(caller):
            raise Unauthorized(f"{action}: caller {caller!r} is not the owner")

    def require_privileged(self, caller: str, *, action: str) -> None:
        if not self.is_privileged(caller):
            raise Unauthorized(f"{action}: caller {caller!r} lacks the privileged role")

    def grant(self, identity: str) -> bool:
        """Add `identity`; returns False if it was already a member."""
        if not identity or not identity.strip():
            raise ValueError("identity must be non-empty")
        require_external(identity, role="member")
        if identity in self._privileged:
            return False
        self._privileged.add(identity)
        return True

    def revoke(self, identity: str) -> bool:
        if identity not in self._privileged:
            return False
        self._privileged.discard(identity)
        return True
