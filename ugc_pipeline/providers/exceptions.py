"""
Provider exceptions.
"""


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"[{provider}] {message}")


class ProviderUnavailable(ProviderError):
    """Provider is not available (missing API key, network error, etc.)."""

    def __init__(self, provider: str, reason: str = "unavailable"):
        super().__init__(provider, f"Provider unavailable: {reason}")
        self.reason = reason


class GenerationFailure(ProviderError):
    """A generative call returned an error or no usable output."""


class ContentPolicyError(GenerationFailure):
    """The model refused the prompt."""


class StorageError(ProviderError):
    """Upload failed or the content type has no uploader."""

    def __init__(self, message: str, provider: str = "storage"):
        super().__init__(provider, message)
