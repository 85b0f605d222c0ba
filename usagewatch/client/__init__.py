"""HTTP client for the usage endpoint and credential input validation."""

from usagewatch.client.usage_client import UsageClient
from usagewatch.client.validation import validate_org_id, validate_session_token

__all__ = ["UsageClient", "validate_org_id", "validate_session_token"]
