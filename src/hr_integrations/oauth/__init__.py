from .config import get_oauth_config, provider_family
from .manager import OAuthExchangeResult, OAuthManager

__all__ = ["get_oauth_config", "provider_family", "OAuthExchangeResult", "OAuthManager"]
