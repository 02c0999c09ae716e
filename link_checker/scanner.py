"""
1.0 Account Scanner Module
Checks as many not-yet-checked URLs in one account as the invocation allows.

Flow per account:
1. Seed the exclusion set with URLs of entities marked earlier this cycle
2. Ads, then keywords, then campaign and ad group sitelinks:
   expand each URL, poll the deadline before every request, record a
   result per request, then mark the entity
3. Stop early on daily quota, exhausted rate limit retries or the deadline;
   results gathered so far are always returned
"""

import json
import logging
import time
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from link_checker.checkpoint import CheckpointStore
from link_checker.config import Options
from link_checker.entities import (
    Ad,
    Entity,
    EntityRepository,
    Keyword,
    Page,
    Sitelink,
)
from link_checker.errors import ErrorKind
from link_checker.http_probe import HttpProbe, ProbeResult
from link_checker.url_expander import expand_url_modifiers
from link_checker.url_source import EntityUrlSource

logger = logging.getLogger(__name__)


class ScanState(Enum):
    SCANNING = "scanning"
    STOPPED_BY_LIMIT = "stopped_by_limit"        # a listing was truncated
    STOPPED_BY_TIMEOUT = "stopped_by_timeout"
    STOPPED_BY_QUOTA = "stopped_by_quota"        # daily fetch quota exhausted
    STOPPED_BY_QPS = "stopped_by_qps"            # rate limit retries exhausted
    DONE = "done"


_FAILURE_STATES = {
    ErrorKind.QUOTA_EXHAUSTED: ScanState.STOPPED_BY_QUOTA,
    ErrorKind.QPS_EXHAUSTED: ScanState.STOPPED_BY_QPS,
}


class Deadline:
    """
    2.0 Wall-clock budget of one invocation.

    Shared by every scanner of the invocation; each polls it between units of
    work and stops on its own.
    """

    def __init__(self, time_limit_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.time_limit_seconds = time_limit_seconds
        self.started = clock()

    def remaining(self) -> float:
        return self.time_limit_seconds - (self._clock() - self.started)

    def expired(self) -> bool:
        return self.remaining() <= 0


# =============================================================================
# 3.0 RESULTS
# =============================================================================

@dataclass(frozen=True)
class UrlCheckResult:
    """One probed URL and the entity it came from."""
    account_id: str
    timestamp: str
    url: str
    response_code: Any
    entity_type: str
    campaign_name: str = ""
    ad_group_name: str = ""
    ad_text: str = ""
    keyword_text: str = ""
    sitelink_text: str = ""

    @classmethod
    def from_probe(cls, entity: Entity, probe: ProbeResult) -> "UrlCheckResult":
        return cls(
            account_id=entity.account_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            url=probe.url,
            response_code=probe.result,
            entity_type=entity.entity_type,
            campaign_name=entity.campaign_name,
            ad_group_name=entity.ad_group_name,
            ad_text=entity.display_text() if isinstance(entity, Ad) else "",
            keyword_text=entity.text if isinstance(entity, Keyword) else "",
            sitelink_text=entity.link_text if isinstance(entity, Sitelink) else "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AccountOutcome:
    """Per-account result of one invocation; did_complete only when DONE."""
    account_id: str
    url_checks: List[UrlCheckResult] = field(default_factory=list)
    did_complete: bool = False
    state: ScanState = ScanState.SCANNING

    def to_json(self) -> str:
        return json.dumps({
            "account_id": self.account_id,
            "url_checks": [c.to_dict() for c in self.url_checks],
            "did_complete": self.did_complete,
            "state": self.state.value,
        })

    @classmethod
    def from_json(cls, payload: str) -> "AccountOutcome":
        data = json.loads(payload)
        return cls(
            account_id=data["account_id"],
            url_checks=[UrlCheckResult(**c) for c in data.get("url_checks", [])],
            did_complete=bool(data.get("did_complete")),
            state=ScanState(data.get("state", ScanState.SCANNING.value)),
        )


# =============================================================================
# 4.0 SCANNER
# =============================================================================

class AccountScanner:
    """
    4.0 Scans one account until its backlog is empty or it must stop.

    Args:
        source: Listings for the account
        probe: HttpProbe used for every request
        checkpoint: Store receiving the entity marks
        deadline: Invocation deadline
        timeout_buffer: Seconds to keep in reserve for saving results
    """

    def __init__(self, source: EntityUrlSource, probe: HttpProbe, checkpoint: CheckpointStore,
                 deadline: Deadline, timeout_buffer: float = 120):
        self.source = source
        self.probe = probe
        self.checkpoint = checkpoint
        self.deadline = deadline
        self.timeout_buffer = timeout_buffer
        self.account_id = source.account_id
        self.options = source.options
        self.checked_urls: Set[str] = set()
        self.url_checks: List[UrlCheckResult] = []

    def _out_of_time(self) -> bool:
        return self.deadline.remaining() < self.timeout_buffer

    def _check_entity(self, entity: Entity) -> Optional[ScanState]:
        """Probe every new URL variant of an entity. Returns a stop state, if any."""
        for raw_url in entity.urls():
            for url in expand_url_modifiers(raw_url):
                if url in self.checked_urls:
                    continue
                # Entity stays unmarked; its checks so far are still returned
                if self._out_of_time():
                    return ScanState.STOPPED_BY_TIMEOUT
                probe = self.probe.request_url(url)
                if probe.failure is not None:
                    return _FAILURE_STATES[probe.failure]
                self.url_checks.append(UrlCheckResult.from_probe(entity, probe))
                self.checked_urls.add(url)
        return None

    def _check_page(self, page: Page, mark: bool = True) -> Tuple[Optional[ScanState], bool]:
        """
        4.1 Check every entity of a page.

        Returns (stop state or None, whether the page held every match).
        """
        entities = list(page)
        for entity in entities:
            stop = self._check_entity(entity)
            if stop is not None:
                return stop, False
            if mark:
                self.checkpoint.mark(self.account_id, entity.key)
                if self._out_of_time():
                    return ScanState.STOPPED_BY_TIMEOUT, False
        return None, len(entities) == page.total_num_entities

    def _check_sitelinks(self) -> Tuple[Optional[ScanState], bool]:
        """
        4.2 Sitelinks cannot be marked, so their parent is marked once all of
        its sitelinks are checked. Parents without sitelinks stay unmarked.
        """
        complete = True
        for parents in self.source.sitelink_parents():
            snapshot = list(parents)
            for parent in snapshot:
                sitelinks = self.source.sitelinks(parent)
                if not sitelinks.has_next():
                    continue
                stop, page_complete = self._check_page(sitelinks, mark=False)
                if stop is not None:
                    return stop, False
                complete = complete and page_complete
                self.checkpoint.mark(self.account_id, parent.key)
                if self._out_of_time():
                    return ScanState.STOPPED_BY_TIMEOUT, False
            complete = complete and len(snapshot) == parents.total_num_entities
        return None, complete

    def _run_steps(self) -> ScanState:
        self.checked_urls = self.source.already_checked_urls()
        self.url_checks = []

        steps = []
        if self.options.check_ad_urls:
            steps.append(("ads", lambda: self._check_page(self.source.ads())))
        if self.options.check_keyword_urls:
            steps.append(("keywords", lambda: self._check_page(self.source.keywords())))
        if self.options.check_sitelink_urls:
            steps.append(("sitelinks", self._check_sitelinks))

        state = ScanState.SCANNING
        all_listed = True
        for name, step in steps:
            stop, complete = step()
            if stop is not None:
                state = stop
                break
            if not complete:
                logger.info(f"Account {self.account_id}: {name} listing was truncated, continuing next run")
            all_listed = all_listed and complete

        if state is ScanState.SCANNING:
            return ScanState.DONE if all_listed else ScanState.STOPPED_BY_LIMIT
        logger.info(f"Account {self.account_id}: stopped checking URLs early ({state.value}); "
                    f"checked URLs will still be saved")
        return state

    def scan(self) -> AccountOutcome:
        """4.3 Run the scan and report how far it got."""
        self.checkpoint.ensure_label(self.account_id)
        try:
            state = self._run_steps()
        finally:
            self.checkpoint.flush(self.account_id)

        outcome = AccountOutcome(
            account_id=self.account_id,
            url_checks=list(self.url_checks),
            did_complete=state is ScanState.DONE,
            state=state,
        )
        logger.info(f"Account {self.account_id}: {len(outcome.url_checks)} URLs checked, state={state.value}")
        return outcome


# =============================================================================
# 5.0 WORKER ENTRY POINT
# =============================================================================

@dataclass
class ScanContext:
    """Collaborators shared by every worker of one invocation."""
    repository: EntityRepository
    checkpoint: CheckpointStore
    probe: HttpProbe
    deadline: Deadline
    timeout_buffer: float = 120


def process_account(account_id: str, options_json: str, context: ScanContext) -> str:
    """
    5.1 Worker run once per account: JSON options in, JSON AccountOutcome out.

    Nothing mutable crosses this boundary except through the checkpoint store.
    """
    options = Options.from_json(options_json)
    source = EntityUrlSource(context.repository, context.checkpoint, account_id, options)
    scanner = AccountScanner(source, context.probe, context.checkpoint,
                             context.deadline, context.timeout_buffer)
    return scanner.scan().to_json()
