"""Backend driver registry.

Drivers are looked up by name; new backends are added with
:func:`register_adapter` instead of editing a switch.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel

from streamhub.domain.exceptions import ConfigurationError
from streamhub.infrastructure.adapters.base import BaseStreamAdapter, StreamAdapter
from streamhub.infrastructure.adapters.ffmpeg import FFmpegAdapter
from streamhub.infrastructure.adapters.livekit import LiveKitAdapter
from streamhub.infrastructure.adapters.nginx_rtmp import NginxRTMPAdapter
from streamhub.infrastructure.adapters.srs import SRSAdapter

logger = logging.getLogger(__name__)

CUSTOM = "custom"

# Registry of adapter implementations
_ADAPTERS: Dict[str, Type[BaseStreamAdapter]] = {
    "srs": SRSAdapter,
    "ffmpeg": FFmpegAdapter,
    "nginx-rtmp": NginxRTMPAdapter,
    "livekit": LiveKitAdapter,
}


def register_adapter(name: str, adapter_class: Type[BaseStreamAdapter]) -> None:
    """Register a new adapter implementation.

    Args:
        name: Backend identifier
        adapter_class: Driver class
    """
    if name.lower() == CUSTOM:
        raise ConfigurationError("'custom' is reserved for caller-supplied adapter instances")
    _ADAPTERS[name.lower()] = adapter_class
    logger.info(f"Registered adapter: {name}")


def get_supported_adapters() -> List[str]:
    return [*_ADAPTERS.keys(), CUSTOM]


def create_adapter(
    name: str,
    config: Optional[Union[BaseModel, Mapping[str, Any]]] = None,
    *,
    adapter: Optional[StreamAdapter] = None,
    **kwargs: Any,
) -> StreamAdapter:
    """Create the driver registered as ``name``.

    Args:
        name: Backend identifier, or ``custom`` together with ``adapter``
        config: Driver configuration
        adapter: Ready-made driver, required for ``custom``
        **kwargs: Passed to the driver constructor

    Returns:
        StreamAdapter: Driver instance

    Raises:
        ConfigurationError: For unknown names, invalid config or a missing
            custom adapter
    """
    key = name.lower()
    if key == CUSTOM:
        if adapter is None:
            raise ConfigurationError("A custom adapter instance is required for adapter 'custom'")
        if not isinstance(adapter, StreamAdapter):
            raise ConfigurationError(
                f"{type(adapter).__name__} does not implement the StreamAdapter contract"
            )
        return adapter

    adapter_class = _ADAPTERS.get(key)
    if adapter_class is None:
        raise ConfigurationError(
            f"Unsupported adapter: {name}. Available adapters: {get_supported_adapters()}"
        )
    logger.info(f"Creating {adapter_class.__name__}")
    return adapter_class(config, **kwargs)
