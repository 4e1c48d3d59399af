"""
Logging for the WorksheetAI backend.

Usage:
	import logging

	logger = logging.getLogger(__name__)
	logger.info("Uploaded %s (%d bytes)", public_id, size)

``setup_logging`` is called once from ``main.py`` at import time.
"""

import logging
import sys

_configured = False

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "multipart", "pypdf")


def setup_logging(level: str = "INFO") -> None:
	"""Configure root logging. Subsequent calls are no-ops."""
	global _configured
	if _configured:
		return

	logging.basicConfig(
		level=getattr(logging, level.upper(), logging.INFO),
		format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
		datefmt="%H:%M:%S",
		stream=sys.stdout,
		force=True,
	)
	for name in _NOISY_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)
	_configured = True
