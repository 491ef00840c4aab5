"""Scope schemas.

A scope is the tenant boundary every usage event, credit transaction and
entitlement lookup is filed under. It is a closed union of two variants,
discriminated on ``kind``, and is always passed explicitly.
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def _key_part(identifier: str) -> str:
    """Percent-encode one ID so ``:`` inside it cannot be read as a separator."""
    return quote(identifier, safe="")


class ScopeKind(str, Enum):
    """Scope kind enum."""

    AGENCY = "AGENCY"
    SUBACCOUNT = "SUBACCOUNT"


class _ScopeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    agency_id: str = Field(..., min_length=1, description="Owning agency (tenant) ID")

    @property
    def tenant_id(self) -> str:
        """The tenant that owns entitlements for this scope."""
        return self.agency_id


class AgencyScope(_ScopeBase):
    """Agency-wide scope."""

    kind: Literal["AGENCY"] = "AGENCY"

    @property
    def sub_account_id(self) -> Optional[str]:
        """Agency scopes have no sub-account."""
        return None

    @property
    def scope_key(self) -> str:
        """Stable key used in unique indexes and idempotency namespaces."""
        return f"AGENCY:{_key_part(self.agency_id)}"


class SubAccountScope(_ScopeBase):
    """Scope of one sub-account inside an agency."""

    kind: Literal["SUBACCOUNT"] = "SUBACCOUNT"
    sub_account_id: str = Field(..., min_length=1, description="Sub-account ID")

    @property
    def scope_key(self) -> str:
        """Stable key used in unique indexes and idempotency namespaces."""
        return f"SUBACCOUNT:{_key_part(self.agency_id)}:{_key_part(self.sub_account_id)}"


Scope = Annotated[Union[AgencyScope, SubAccountScope], Field(discriminator="kind")]

_scope_adapter: TypeAdapter = TypeAdapter(Scope)


def scope_from_ids(agency_id: str, sub_account_id: Optional[str] = None) -> Scope:
    """Build the scope variant implied by the given identifiers."""
    if sub_account_id:
        return SubAccountScope(agency_id=agency_id, sub_account_id=sub_account_id)
    return AgencyScope(agency_id=agency_id)


def parse_scope(data: dict) -> Scope:
    """Validate a serialized scope back into its variant."""
    return _scope_adapter.validate_python(data)


def same_tenant(a: Scope, b: Scope) -> bool:
    """Whether two scopes belong to the same agency."""
    return a.agency_id == b.agency_id
