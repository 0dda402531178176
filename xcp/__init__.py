"""xcp - Chain proxy relay manager.

Builds and edits the configuration document of a two-tier relay chain
(client -> EDGE -> GATEWAY -> internet) and drives the proxy engine that
serves it.
"""

from __future__ import annotations

__version__ = "2.1.0"

from xcp.config.document import ConfigDocument
from xcp.config.store import DocumentStore
from xcp.config.synthesizer import ConfigSynthesizer
from xcp.core.accounts import AccountRegistry
from xcp.core.routing import RoutingRuleEngine

__all__ = [
    "AccountRegistry",
    "ConfigDocument",
    "ConfigSynthesizer",
    "DocumentStore",
    "RoutingRuleEngine",
    "__version__",
]
