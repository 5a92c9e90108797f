"""Tenant session identity passed explicitly into every sync call."""

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    """Immutable identity of the active tenant session.

    Attributes:
        tenant_id: Restaurant id that partitions local and remote data.
        user_id: Signed-in user, if any. Informational only.
    """

    tenant_id: str
    user_id: str | None = None

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("tenant_id must be a non-empty string")
