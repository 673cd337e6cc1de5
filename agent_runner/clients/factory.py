from typing import Optional

from ..config import settings
from ..errors import ProviderConfigError
from ..models.agent import ProviderAccount
from .mock_client import MockProviderClient
from .openai_compat_client import OpenAICompatClient
from .provider_client import ProviderClient

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


def build_provider(account: Optional[ProviderAccount]) -> ProviderClient:
    """Pick the adapter for an agent's provider account (mock when unset)."""
    if account is None or account.type == "mock":
        return MockProviderClient()
    if account.type == "openai_compat":
        config = account.config_json or {}
        if not account.api_key:
            raise ProviderConfigError("provider account has no api key", code="missing_api_key")
        return OpenAICompatClient(
            base_url=config.get("baseUrl") or DEFAULT_OPENAI_BASE_URL,
            api_key=account.api_key,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
    raise ProviderConfigError(f"unsupported provider type: {account.type}", code="unsupported_provider")
