from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobTimeout(Exception):
	pass


class JobQueue:
	"""Bounded-concurrency runner for slow upstream calls.

	At most ``concurrency`` jobs run at once; the rest wait their turn. Each
	job gets ``timeout`` seconds once it starts running.
	"""

	def __init__(self, name: str, concurrency: int, timeout: Optional[float] = None) -> None:
		self.name = name
		self.concurrency = concurrency
		self.timeout = timeout
		self._semaphore = asyncio.Semaphore(concurrency)
		self.waiting = 0
		self.active = 0

	def stats(self) -> dict:
		return {"name": self.name, "waiting": self.waiting, "active": self.active, "concurrency": self.concurrency}

	async def run(self, job: Awaitable[T]) -> T:
		self.waiting += 1
		try:
			await self._semaphore.acquire()
		except BaseException:
			self.waiting -= 1
			# the job never started; close it so it is not left un-awaited
			if asyncio.iscoroutine(job):
				job.close()
			raise
		self.waiting -= 1
		self.active += 1
		logger.info("%s queue: %d waiting, %d processing", self.name, self.waiting, self.active)
		try:
			if self.timeout:
				return await asyncio.wait_for(job, timeout=self.timeout)
			return await job
		except asyncio.TimeoutError as err:
			raise JobTimeout(f"{self.name} job timed out after {self.timeout:.0f}s") from err
		finally:
			self.active -= 1
			self._semaphore.release()


worksheet_queue = JobQueue(
	"Worksheet",
	concurrency=settings.worksheet_queue_concurrency,
	timeout=settings.worksheet_queue_timeout_seconds,
)


async def log_queue_stats(interval: float = 60.0) -> None:
	while True:
		await asyncio.sleep(interval)
		if worksheet_queue.waiting or worksheet_queue.active:
			logger.info(
				"Worksheet queue stats: %d waiting, %d active",
				worksheet_queue.waiting, worksheet_queue.active,
			)
