"""
1.0 Result Aggregator Module
Merges the per-account outcomes of one invocation into the cycle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from link_checker.checkpoint import CheckpointStore
from link_checker.config import Options
from link_checker.dispatch import ExecutionResult, TaskStatus
from link_checker.notifier import FINAL_TEXT, FINAL_TITLE, INTERMEDIATE_TEXT, INTERMEDIATE_TITLE, SlackNotifier
from link_checker.results import CycleStateStore, ResultLog, now_utc
from link_checker.scanner import AccountOutcome, UrlCheckResult

logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    url_checks: List[UrlCheckResult] = field(default_factory=list)
    did_complete: bool = True
    num_errors: int = 0
    notified: bool = False


def count_errors(url_checks: List[UrlCheckResult], options: Options) -> int:
    """Checks whose response is not one of the valid codes."""
    return sum(1 for check in url_checks if not options.is_valid_code(check.response_code))


class ResultAggregator:
    """
    2.0 Combines task results, marks finished accounts and updates the cycle.

    Args:
        checkpoint: Store receiving account-level marks
        has_unchecked_accounts: Query telling whether any unmarked account remains
        result_log: CSV log receiving new entries
        cycle_store: Cycle metadata
        notifier: Notification sink
        report_link: Link included in notifications
    """

    def __init__(
        self,
        checkpoint: CheckpointStore,
        has_unchecked_accounts: Callable[[], bool],
        result_log: ResultLog,
        cycle_store: CycleStateStore,
        notifier: Optional[SlackNotifier] = None,
        report_link: str = "",
    ):
        self.checkpoint = checkpoint
        self.has_unchecked_accounts = has_unchecked_accounts
        self.result_log = result_log
        self.cycle_store = cycle_store
        self.notifier = notifier
        self.report_link = report_link or result_log.results_path

    def merge(self, execution_results: List[ExecutionResult]) -> AggregateResult:
        """
        2.1 Concatenate checks and AND completion over every task.

        A late task still returns the checks behind the entities it marked, so
        those are kept; only an OK task can mark its account.
        """
        merged = AggregateResult()
        for execution in execution_results:
            if execution.status is not TaskStatus.OK:
                merged.did_complete = False
                logger.warning(f"Processing for {execution.account_id} failed ({execution.status.value}): "
                               f"{execution.error}")
            if execution.return_value is None:
                continue
            outcome = AccountOutcome.from_json(execution.return_value)
            merged.url_checks.extend(outcome.url_checks)
            merged.did_complete = merged.did_complete and outcome.did_complete
            if execution.status is TaskStatus.OK and outcome.did_complete:
                self.checkpoint.mark_account(execution.account_id)

        # Accounts that errored, timed out or were never dispatched stay unmarked
        merged.did_complete = merged.did_complete and not self.has_unchecked_accounts()
        return merged

    def process_results(self, execution_results: List[ExecutionResult], options: Options,
                        now: Optional[datetime] = None) -> AggregateResult:
        """
        2.2 Merge, persist and notify.

        Saves every new check when save_all_urls is set, otherwise only the
        errors. Stamps completed_at when the whole cycle is done.
        """
        now = now or now_utc()
        merged = self.merge(execution_results)
        merged.num_errors = count_errors(merged.url_checks, options)
        logger.info(f"Found {merged.num_errors} errors this execution")

        rows = [
            check.to_dict() for check in merged.url_checks
            if options.save_all_urls or not options.is_valid_code(check.response_code)
        ]
        self.result_log.append(rows)

        cycle = self.cycle_store.load()
        cycle.error_count += merged.num_errors
        # Only the run that finishes the cycle stamps it and sends the final notice
        newly_completed = merged.did_complete and cycle.in_progress
        if newly_completed:
            cycle.completed_at = now
            logger.info(f"Analysis complete: {cycle.error_count} errors across the entire analysis")

        merged.notified = self._notify(cycle, merged, newly_completed, options, now)
        self.cycle_store.save(cycle)
        return merged

    def _notify(self, cycle, merged: AggregateResult, newly_completed: bool,
                options: Options, now: datetime) -> bool:
        """2.3 Send at most one final notification per completed cycle."""
        if self.notifier is None:
            return False

        if merged.did_complete:
            wants = options.email_each_run or options.email_on_completion
            # email_non_errors only applies to email; the webhook needs errors
            if not (newly_completed and wants and cycle.error_count > 0):
                return False
            text = f"{FINAL_TEXT} {cycle.error_count} URLs with errors across the entire analysis."
            sent = self.notifier.send(FINAL_TITLE, text, cycle.error_count, self.report_link)
        elif options.email_each_run and merged.num_errors > 0:
            text = f"{INTERMEDIATE_TEXT} {merged.num_errors} URLs with errors found in this run."
            sent = self.notifier.send(INTERMEDIATE_TITLE, text, merged.num_errors, self.report_link)
        else:
            return False

        # Stamped even when delivery failed; delivery is not retried
        cycle.notified_at = now
        return sent
