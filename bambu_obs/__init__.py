from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Optional

from .bridge import BambuObsBridge
from .config import ConfigError, Settings, load_config
from .const import DOMAIN
from .files import PrintFileSource

__all__ = ["BambuObsBridge", "ConfigError", "Settings", "async_run", "load_config"]
__version__ = "1.0.0"

_LOGGER = logging.getLogger(__name__)


async def async_run(settings: Settings, files: Optional[PrintFileSource] = None) -> int:
    """Run the bridge until a signal, a fatal error or an exit condition stops it."""
    bridge = BambuObsBridge(settings, files=files)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, bridge.request_stop)

    _LOGGER.info("%s %s starting", DOMAIN, __version__)
    return await bridge.run()
