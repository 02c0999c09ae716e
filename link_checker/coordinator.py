"""
1.0 Cycle Coordinator Module
Decides what one invocation does with the current analysis cycle, then fans
the account scans out and hands their outcomes to the aggregator.

Decision table:
- never started                          -> start a new cycle
- started, not completed since           -> resume (marks are kept)
- completed, < frequency_days ago        -> wait, do nothing
- completed, >= frequency_days ago       -> clear all marks, start a new cycle
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any, Dict, List, Optional

from link_checker.aggregator import AggregateResult, ResultAggregator
from link_checker.checkpoint import CheckpointStore, JsonCheckpointStore
from link_checker.config import Options, get_account_conditions, get_quota_config
from link_checker.dispatch import ExecutionResult, dispatch_accounts
from link_checker.entities import AccountFilter, EntityRepository, InventoryRepository, Page
from link_checker.errors import ConfigError
from link_checker.http_probe import FetchQuota, HttpProbe, RequestsFetcher
from link_checker.notifier import SlackNotifier
from link_checker.results import Cycle, CycleStateStore, ResultLog, now_utc
from link_checker.scanner import Deadline, ScanContext, process_account

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class CycleAction(Enum):
    START_NEW = "start_new"
    RESUME = "resume"
    WAIT = "wait"
    RESTART = "restart"


@dataclass
class InvocationReport:
    """What one invocation did."""
    action: CycleAction
    dispatched: List[str] = field(default_factory=list)
    execution_results: List[ExecutionResult] = field(default_factory=list)
    aggregate: Optional[AggregateResult] = None


def decide_action(cycle: Cycle, frequency_days: float, now: datetime) -> CycleAction:
    """2.0 Pick the cycle action from the persisted metadata."""
    if cycle.started_at is None:
        return CycleAction.START_NEW
    if cycle.in_progress:
        return CycleAction.RESUME
    if cycle.days_since_completed(now) < frequency_days:
        return CycleAction.WAIT
    return CycleAction.RESTART


class CycleCoordinator:
    """
    3.0 Runs one invocation of the link checker.

    Args:
        repository: Account hierarchy and link inventory
        checkpoint: Entity and account marks
        cycle_store: Cycle metadata
        result_log: CSV result and archive logs
        scan_context: Collaborators handed to every account worker
        notifier: Notification sink (optional)
        account_conditions: {"account_ids": [...], "min_cost": float|None}
        batch_size: Accounts dispatched per invocation
        max_workers: Thread pool size
        report_link: Link included in notifications
    """

    def __init__(
        self,
        repository: EntityRepository,
        checkpoint: CheckpointStore,
        cycle_store: CycleStateStore,
        result_log: ResultLog,
        scan_context: ScanContext,
        notifier: Optional[SlackNotifier] = None,
        account_conditions: Optional[Dict[str, Any]] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int = 8,
        report_link: str = "",
        fetch_quota: Optional[FetchQuota] = None,
    ):
        self.repository = repository
        self.checkpoint = checkpoint
        self.cycle_store = cycle_store
        self.result_log = result_log
        self.scan_context = scan_context
        self.account_conditions = account_conditions or {}
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.fetch_quota = fetch_quota
        self.aggregator = ResultAggregator(
            checkpoint=checkpoint,
            has_unchecked_accounts=self.has_unchecked_accounts,
            result_log=result_log,
            cycle_store=cycle_store,
            notifier=notifier,
            report_link=report_link,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any], preview: Optional[bool] = None) -> "CycleCoordinator":
        """3.1 Wire every collaborator from a loaded configuration."""
        data_dir = config["data_directory"]
        preview = config.get("preview", False) if preview is None else preview

        inventory_file = config["inventory_file"]
        if not os.path.exists(inventory_file):
            raise ConfigError(f"Inventory file not found: {inventory_file}")

        quota_config = get_quota_config(config)
        quota = FetchQuota(
            max_requests_per_second=quota_config.get("max_requests_per_second"),
            daily_limit=quota_config.get("daily_fetch_quota"),
            state_file=os.path.join(data_dir, "fetch_quota.json"),
        )
        fetcher = RequestsFetcher(
            quota=quota,
            user_agent=config["user_agent"],
            timeout=config["request_timeout"],
            pool_size=config["max_concurrent_accounts"],
        )
        checkpoint = JsonCheckpointStore(data_dir=data_dir, label=config["label"], preview=preview,
                                         flush_every=config["checkpoint_flush_every"])
        repository = InventoryRepository.from_file(inventory_file, page_limit=config["page_limit"])
        context = ScanContext(
            repository=repository,
            checkpoint=checkpoint,
            probe=HttpProbe.from_config(fetcher, quota_config, throttle=config["throttle_seconds"]),
            deadline=Deadline(config["execution_time_limit_seconds"]),
            timeout_buffer=config["timeout_buffer_seconds"],
        )
        return cls(
            repository=repository,
            checkpoint=checkpoint,
            cycle_store=CycleStateStore(data_dir),
            result_log=ResultLog(data_dir),
            scan_context=context,
            notifier=SlackNotifier(config.get("slack_webhook_url")),
            account_conditions=get_account_conditions(config),
            batch_size=config["account_batch_size"],
            max_workers=config["max_concurrent_accounts"],
            report_link=config.get("report_url", ""),
            fetch_quota=quota,
        )

    # =========================================================================
    # 4.0 ACCOUNT SELECTION
    # =========================================================================

    def _account_filter(self, has_label: Optional[bool], limit: Optional[int] = None) -> AccountFilter:
        # Without the account label nothing can be marked yet, so don't filter on it
        if not self.checkpoint.account_label_exists():
            has_label = None
        return AccountFilter(
            account_ids=tuple(self.account_conditions.get("account_ids") or ()),
            min_cost=self.account_conditions.get("min_cost"),
            has_label=has_label,
            limit=limit,
        )

    def unchecked_accounts(self, limit: Optional[int] = None) -> Page:
        return self.repository.accounts(self._account_filter(False, limit), self.checkpoint.is_account_marked)

    def has_unchecked_accounts(self) -> bool:
        return self.unchecked_accounts(limit=1).has_next()

    # =========================================================================
    # 5.0 CYCLE TRANSITIONS
    # =========================================================================

    def reset_marks(self) -> None:
        """5.1 Clear entity marks in every account, then the account marks."""
        every_account = {a.id for a in self.repository.accounts(AccountFilter())}
        for account_id in sorted(every_account | set(self.checkpoint.marked_accounts())):
            self.checkpoint.clear_account(account_id)
        self.checkpoint.clear_account_marks()

    def start_new_cycle(self, cycle: Cycle, options: Options, now: datetime) -> Cycle:
        """5.2 Archive the previous results and stamp the start of a new cycle."""
        logger.info("Starting a new analysis.")
        self.result_log.archive_and_clear()
        cycle.started_at = now
        cycle.error_count = 0
        cycle.frequency_days = options.frequency_days
        self.cycle_store.save(cycle)
        return cycle

    # =========================================================================
    # 6.0 INVOCATION
    # =========================================================================

    def run(self, options: Options, now: Optional[datetime] = None) -> InvocationReport:
        """
        6.1 One invocation: decide, dispatch up to batch_size accounts, aggregate.

        Raises CheckpointUnavailableError before touching any state when marks
        cannot be created or removed (preview mode).
        """
        now = now or now_utc()
        cycle = self.cycle_store.load()
        action = decide_action(cycle, options.frequency_days, now)
        logger.info(f"Cycle state: {cycle.to_dict()} -> {action.value}")

        if action is CycleAction.WAIT:
            logger.info(f"Waiting until {options.frequency_days} days have elapsed since the last analysis completed.")
            return InvocationReport(action=action)

        if action is CycleAction.RESUME:
            logger.info("Resuming work from a previous execution.")
        elif action is CycleAction.START_NEW:
            self.checkpoint.ensure_account_label()
            self.start_new_cycle(cycle, options, now)
        else:
            self.reset_marks()
            self.start_new_cycle(cycle, options, now)

        self.checkpoint.ensure_account_label()

        account_ids = [a.id for a in self.unchecked_accounts(limit=self.batch_size)]
        # Entity labels are created here so a preview run fails before any scan starts
        for account_id in account_ids:
            self.checkpoint.ensure_label(account_id)

        execution_results = []
        if account_ids:
            deadline = self.scan_context.deadline
            wait_seconds = max(0.0, deadline.remaining() - self.scan_context.timeout_buffer / 2)
            worker = partial(process_account, context=self.scan_context)
            execution_results = dispatch_accounts(
                account_ids,
                worker,
                options.to_json(),
                max_workers=self.max_workers,
                timeout=wait_seconds,
            )
        else:
            logger.info("No accounts left to check in this cycle")

        try:
            aggregate = self.aggregator.process_results(execution_results, options, now)
        finally:
            if self.fetch_quota is not None:
                self.fetch_quota.save()

        return InvocationReport(
            action=action,
            dispatched=account_ids,
            execution_results=execution_results,
            aggregate=aggregate,
        )
