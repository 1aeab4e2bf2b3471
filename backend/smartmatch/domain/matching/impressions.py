"""Best-effort impression logging for offline experiment analysis."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from smartmatch.domain.matching.models import ImpressionRecord
from smartmatch.domain.matching.store import MatchStore
from smartmatch.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

# Strong references to in-flight writes; the event loop only keeps weak ones.
_pending: set[asyncio.Task] = set()


async def write_impression(store: MatchStore, record: ImpressionRecord) -> bool:
	"""Persist one impression; failures are logged and reported as False."""
	try:
		await store.insert_impression(record)
	except Exception as exc:
		logger.warning(
			"match_impression_failed",
			extra={"context": record.context, "experiment_id": record.experiment_id, "error": str(exc)},
		)
		obs_metrics.inc_impression("error")
		return False
	obs_metrics.inc_impression("ok")
	return True


def record_impression(store: MatchStore, record: ImpressionRecord) -> Optional[asyncio.Task]:
	"""Schedule a detached impression write; empty pages are not recorded."""
	if not record.candidate_ids:
		obs_metrics.inc_impression("skipped")
		return None
	task = asyncio.create_task(write_impression(store, record))
	_pending.add(task)
	task.add_done_callback(_pending.discard)
	return task


def pending_count() -> int:
	return len(_pending)


async def drain(timeout: float = 5.0) -> None:
	"""Wait for outstanding impression writes, used on application shutdown."""
	if not _pending:
		return
	tasks = list(_pending)
	_, still_pending = await asyncio.wait(tasks, timeout=timeout)
	for task in still_pending:
		task.cancel()
	if still_pending:
		logger.warning("match_impressions_abandoned", extra={"count": len(still_pending)})


__all__ = ["drain", "pending_count", "record_impression", "write_impression"]
