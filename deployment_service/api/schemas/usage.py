from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from deployment_service.billing.models import UsageEvent


class UsageRecordRequest(BaseModel):
    """Body of the agent runtime's record-usage call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Resolved from the deployment record when omitted
    user_id: Optional[str] = None

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    latency_ms: float = Field(default=0.0, ge=0)
    is_error: bool = False

    def to_event(self) -> UsageEvent:
        return UsageEvent(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            latency_ms=self.latency_ms,
            is_error=self.is_error,
        )
