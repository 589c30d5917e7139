"""IdentityProvider protocol — runtime-checkable interface.

Canopy trusts an external identity provider for account names and
emails and never manages credentials itself.  Implementations only
need ``get_accounts``; ``StaticIdentityProvider`` is an in-memory
implementation for tests and single-process deployments.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .types import AccountInfo

if TYPE_CHECKING:
    from collections.abc import Iterable


@runtime_checkable
class IdentityProvider(Protocol):
    """Resolves account identifiers to display identities."""

    async def get_accounts(self, user_ids: Iterable[str]) -> dict[str, AccountInfo]:
        """Return identities for the known ids among *user_ids*.

        Unknown ids are simply absent from the result.
        """
        ...


class StaticIdentityProvider:
    """Identity provider backed by an in-memory mapping."""

    def __init__(self, accounts: Iterable[AccountInfo] = ()) -> None:
        self._accounts: dict[str, AccountInfo] = {a.id: a for a in accounts}

    def add(self, account: AccountInfo) -> None:
        self._accounts[account.id] = account

    async def get_accounts(self, user_ids: Iterable[str]) -> dict[str, AccountInfo]:
        return {uid: self._accounts[uid] for uid in set(user_ids) if uid in self._accounts}


async def lookup_accounts(
    provider: IdentityProvider | None,
    user_ids: Iterable[str],
) -> dict[str, AccountInfo]:
    """Resolve *user_ids*, falling back to id-only identities for unknown accounts."""
    ids = set(user_ids)
    known: dict[str, AccountInfo] = {}
    if provider is not None and ids:
        known = await provider.get_accounts(ids)
    return {uid: known.get(uid) or AccountInfo(id=uid) for uid in ids}
