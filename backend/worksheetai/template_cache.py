from __future__ import annotations
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .settings import settings


def cache_key(user_id: Optional[str]) -> str:
	return f"worksheet_template_cache_{user_id}" if user_id else "worksheet_template_cache_guest"


class TemplateCache:
	"""Per-user suggestion lists stamped with the time they were stored.

	Entries are never evicted eagerly; a read of an entry older than the TTL
	is a miss and drops it.
	"""

	def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time) -> None:
		self.ttl = ttl_seconds
		self._clock = clock
		self._entries: Dict[str, Tuple[float, List[Dict[str, Any]]]] = {}
		self._lock = threading.Lock()

	def get(self, key: str) -> Optional[List[Dict[str, Any]]]:
		with self._lock:
			entry = self._entries.get(key)
			if entry is None:
				return None
			stored_at, data = entry
			if self._clock() - stored_at >= self.ttl:
				del self._entries[key]
				return None
			return data

	def set(self, key: str, data: List[Dict[str, Any]]) -> None:
		with self._lock:
			self._entries[key] = (self._clock(), data)

	def invalidate(self, key: Optional[str] = None) -> None:
		with self._lock:
			if key is None:
				self._entries.clear()
			else:
				self._entries.pop(key, None)


template_cache = TemplateCache(settings.template_cache_ttl_seconds)
