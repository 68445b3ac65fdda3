"""Per-request cost functions."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class PricingSettings(BaseSettings):
    """Usage rates (USD), overridable with PRICING_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PRICING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    compute_rate_per_ms: float = 0.00000008
    input_token_rate: float = 0.0000015
    output_token_rate: float = 0.000002

    def compute_cost(self, latency_ms: float) -> float:
        return latency_ms * self.compute_rate_per_ms

    def token_cost(self, input_tokens: int, output_tokens: int) -> float:
        return input_tokens * self.input_token_rate + output_tokens * self.output_token_rate
