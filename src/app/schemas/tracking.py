from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class UpstreamInfo(BaseModel):
    """Where and how the origin refused the request."""

    url: str
    status: int = 429
    has_challenge_header: bool = True


class BlockedPayload(BaseModel):
    """Terminal result for an identity whose challenge could not be crossed.

    Cached against the caller identity and returned as-is while fresh.
    """

    model_config = ConfigDict(frozen=True)

    status: Literal["blocked"] = "blocked"
    retryable: Literal[False] = False
    reason: str
    details: str = (
        "Upstream tracking endpoint re-issued its proof-of-work challenge after a solved "
        "resend and cannot be accessed server-side. This is not a transient failure or rate limit."
    )
    upstream: UpstreamInfo


class TrackingLookup(BaseModel):
    """Raw JSON gathered for one tracking reference.

    `shipment` is the first search hit; `details` and `trip` are None when
    the origin has no data for them (404 on the secondary calls).
    """

    reference: str
    shipment: Annotated[
        dict[str, Any] | None,
        Field(default=None, description="First entry of the search result"),
    ]
    details: Annotated[
        dict[str, Any] | None,
        Field(default=None, description="Shipment details document"),
    ]
    trip: Annotated[
        dict[str, Any] | None,
        Field(default=None, description="Trip (geo points) document"),
    ]

    @property
    def found(self) -> bool:
        return self.shipment is not None

    @property
    def has_details(self) -> bool:
        return self.details is not None

    @property
    def has_trip(self) -> bool:
        return self.trip is not None
