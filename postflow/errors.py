# postflow/errors.py
from typing import Optional

# provider responses with these codes describe a malformed or unauthorised request
NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 404})


class DeliveryError(Exception):
    pass


class ValidationError(DeliveryError):
    """Required input is missing; raised before any network call."""


class ResolutionError(DeliveryError):
    """A media reference could not be turned into bytes."""


class ProviderError(DeliveryError):
    retryable = True


class ProviderRequestError(ProviderError):
    def __init__(self, status_code: int, message: str, body: Optional[dict] = None):
        super().__init__(f"{status_code} {message}")
        self.status_code = status_code
        self.message = message
        self.body = body or {}

    @property
    def retryable(self) -> bool:
        return self.status_code not in NON_RETRYABLE_STATUS_CODES


class TransientProviderError(ProviderError):
    """Network-level failure talking to the provider."""


class PlatformPostError(DeliveryError):
    def __init__(self, platform: str, message: str, transient: bool = False):
        super().__init__(f"{platform}: {message}")
        self.platform = platform
        self.message = message
        self.transient = transient


class CredentialError(DeliveryError):
    def __init__(self, platform: str, message: str):
        super().__init__(f"{platform}: {message}")
        self.platform = platform
        self.message = message


class CredentialNotFoundError(CredentialError):
    pass


class PostNotFoundError(ValueError):
    pass


class PostStateError(ValueError):
    """The post is no longer pending and cannot be changed."""
