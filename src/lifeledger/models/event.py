"""Pydantic model for recorded life events."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator


class LifeEvent(BaseModel):
    """One recorded life milestone.

    Immutable after creation except for the one-time verification flip,
    which goes through mark_verified() and yields a new instance.
    """

    id: int = Field(ge=1, description="Ledger-assigned id (monotonic, starts at 1)")
    owner: str = Field(min_length=1, description="Identity that recorded the event")
    event_type: str = Field(min_length=1, description="Event classification, e.g. 'birth'")
    description: str = Field(min_length=1, description="Free-text description")
    created_at: datetime = Field(description="Creation timestamp (UTC)")
    verified: bool = Field(default=False, description="Whether a verifier has attested to it")
    verifier: str | None = Field(default=None, description="Identity that verified the event")
    document_ref: str = Field(default="", description="Opaque reference to an external document")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_verification_pair(self) -> "LifeEvent":
        if self.verified and not self.verifier:
            raise ValueError("verified event must name its verifier")
        if not self.verified and self.verifier is not None:
            raise ValueError("unverified event cannot have a verifier")
        return self

    def mark_verified(self, verifier: str) -> "LifeEvent":
        """Return a verified copy; every other field is carried over as-is."""
        if self.verified:
            raise ValueError(f"Event {self.id} is already verified")
        return self.model_copy(update={"verified": True, "verifier": verifier})
