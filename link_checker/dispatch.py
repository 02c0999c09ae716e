"""
1.0 Parallel Dispatch Module
Runs one worker per account on a thread pool and collects a result per task.

A failing task does not affect its siblings. Tasks not finished when the
invocation deadline passes are reported as TIMEOUT. Tasks that never started
are cancelled. Running ones poll the same deadline before every request, so
dispatch waits for them and keeps whatever they return.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    OK = "OK"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"


@dataclass
class ExecutionResult:
    """Outcome of one worker task: a return value or an error message."""
    account_id: str
    status: TaskStatus
    return_value: Optional[str] = None
    error: Optional[str] = None


def dispatch_accounts(
    account_ids: List[str],
    worker: Callable[[str, str], str],
    payload: str,
    max_workers: int = 4,
    timeout: Optional[float] = None,
) -> List[ExecutionResult]:
    """
    2.0 Run `worker(account_id, payload)` for every account.

    Args:
        account_ids: Accounts to process
        worker: Callable returning a JSON string
        payload: JSON string handed unchanged to every task
        max_workers: Thread pool size
        timeout: Seconds to wait before late tasks are reported as TIMEOUT;
            None waits indefinitely

    Returns:
        One ExecutionResult per account, in the order of account_ids
    """
    if not account_ids:
        return []

    max_workers = max(1, min(max_workers, len(account_ids)))
    logger.info(f"Dispatching {len(account_ids)} accounts to {max_workers} workers")

    executor = ThreadPoolExecutor(max_workers=max_workers)
    futures = {account_id: executor.submit(worker, account_id, payload) for account_id in account_ids}
    _, pending = wait(list(futures.values()), timeout=timeout)

    late = set(pending)
    for future in late:
        # Only tasks that never started can be cancelled
        future.cancel()
    if late:
        logger.warning(f"{len(late)} accounts did not finish before the deadline; "
                       f"waiting for running tasks to stop")
    # Running tasks stop on the shared deadline; their checks must not be lost
    executor.shutdown(wait=True)

    results = []
    for account_id, future in futures.items():
        if future.cancelled():
            logger.error(f"Processing for {account_id} never started before the deadline")
            results.append(ExecutionResult(account_id, TaskStatus.TIMEOUT, error="deadline exceeded"))
            continue
        error = future.exception()
        if error is not None:
            logger.error(f"Processing for {account_id} failed: {type(error).__name__}: {error}")
            results.append(ExecutionResult(account_id, TaskStatus.ERROR, error=str(error)))
        elif future in late:
            logger.error(f"Processing for {account_id} did not finish before the deadline")
            results.append(ExecutionResult(account_id, TaskStatus.TIMEOUT, return_value=future.result(),
                                           error="deadline exceeded"))
        else:
            results.append(ExecutionResult(account_id, TaskStatus.OK, return_value=future.result()))
    return results
