from __future__ import annotations

from typing import Mapping, Optional

from client.supervisor import ConnectionSupervisor
from client.ws_client import Transport
from registry.properties import ConfigKind
from registry.registry import ConfigRegistry
from registry.sources import default_sources
from shared.log import get_logger

logger = get_logger(__name__)

# keys the client reads with a fixed kind, whatever the source produced
CLIENT_DECLARED_KINDS: Mapping[str, ConfigKind] = {
    "host": ConfigKind.STRING,
    "appId": ConfigKind.STRING,
    "scheme": ConfigKind.STRING,
    "timeout": ConfigKind.DURATION,
}


def build_registry(name: str, environ: Optional[Mapping[str, str]] = None) -> ConfigRegistry:
    """Registry from ``name`` as yaml/toml/json file and the ``NAME_`` environment."""
    registry = ConfigRegistry.from_sources(default_sources(name, environ=environ),
                                           declared=CLIENT_DECLARED_KINDS)
    logger.debug(f"Built {registry!r} for {name!r}")
    return registry


def launch(registry: ConfigRegistry, transport: Optional[Transport] = None) -> ConnectionSupervisor:
    """
    Create the supervisor and start its attempt in the background.

    Must be called with an event loop running. Await ``wait_ready()`` on the
    result to know when the attempt is over.
    """
    supervisor = ConnectionSupervisor(registry, transport)
    supervisor.spawn()
    return supervisor
