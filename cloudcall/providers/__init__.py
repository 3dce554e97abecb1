"""
Gateway provider implementations.

Each provider implements the Gateway protocol for a specific service
(Twilio, or the in-process stub used for tests and local runs).
"""

from typing import Optional

from ..core.config import CommsConfig, comms_settings
from ..core.errors import InvalidConfiguration
from ..core.protocols import Gateway

# Provider registry
_providers: dict[str, type[Gateway]] = {}


def register_provider(name: str):
    """Decorator to register a provider implementation."""
    def decorator(cls: type[Gateway]):
        _providers[name] = cls
        return cls
    return decorator


def get_provider(
    name: Optional[str] = None,
    settings: Optional[CommsConfig] = None,
) -> Gateway:
    """
    Get a provider instance by name.

    Args:
        name: Provider name. If None, uses the configured default.
        settings: Configuration handed to the provider.

    Returns:
        Provider instance, not yet connected.

    Raises:
        InvalidConfiguration: If provider not found.
    """
    settings = settings or comms_settings
    if name is None:
        name = settings.provider

    if name not in _providers:
        available = ", ".join(_providers.keys()) or "none"
        raise InvalidConfiguration(
            f"Unknown provider: {name}. Available: {available}"
        )

    provider_cls = _providers[name]
    return provider_cls(settings=settings)


def list_providers() -> list[str]:
    """List available provider names."""
    return list(_providers.keys())


# Imported at the bottom so the modules can use register_provider
from . import stub, twilio  # noqa: E402,F401
