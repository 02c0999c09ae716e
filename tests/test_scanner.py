"""
ACCOUNT SCANNER TESTS - Resumable scanning against an in-memory inventory

Run: pytest tests/test_scanner.py
"""

from link_checker.aggregator import count_errors
from link_checker.config import Options
from link_checker.entities import InventoryRepository
from link_checker.scanner import (
    AccountOutcome,
    AccountScanner,
    Deadline,
    ScanContext,
    ScanState,
    process_account,
)
from link_checker.url_source import EntityUrlSource

from conftest import (
    FakeClock,
    FakeFetcher,
    account,
    ad,
    inventory,
    make_probe,
    quota_exhausted,
    rate_limited,
)

ACCOUNT_ID = "111-111-1111"


def build_scanner(repository, checkpoint, fetcher, options=None, deadline=None, timeout_buffer=120):
    options = options or Options()
    source = EntityUrlSource(repository, checkpoint, ACCOUNT_ID, options)
    deadline = deadline or Deadline(1800, clock=FakeClock())
    return AccountScanner(source, make_probe(fetcher), checkpoint, deadline, timeout_buffer)


# =============================================================================
# 1. END TO END
# =============================================================================


def test_three_ads_one_broken_one_marked_one_with_macros(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[
        ad("a1", "https://x.test/broken"),
        ad("a2", "https://x.test/done"),
        ad("a3", "https://x.test/m?v={ifmobile:m}{ifnotmobile:d}"),
    ])]))
    checkpoint.mark(ACCOUNT_ID, "Ad:a2")
    fetcher = FakeFetcher({"https://x.test/broken": 404})
    options = Options(valid_codes=[200])

    outcome = build_scanner(repository, checkpoint, fetcher, options).scan()

    assert fetcher.requested == ["https://x.test/broken", "https://x.test/m?v=m", "https://x.test/m?v=d"]
    assert len(outcome.url_checks) == 3
    assert count_errors(outcome.url_checks, options) == 1
    assert outcome.did_complete is True
    assert outcome.state is ScanState.DONE
    assert checkpoint.marked_keys(ACCOUNT_ID) >= {"Ad:a1", "Ad:a2", "Ad:a3"}

    broken = outcome.url_checks[0]
    assert broken.response_code == 404
    assert broken.entity_type == "Ad"
    assert broken.ad_text == "Ad a1"
    assert broken.campaign_name == "Campaign One"
    assert broken.ad_group_name == "Group One"


def test_url_shared_with_marked_entity_is_not_requested_again(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[
        ad("a1", "https://x.test/shared"),
        ad("a2", "https://x.test/shared"),
    ])]))
    checkpoint.mark(ACCOUNT_ID, "Ad:a1")
    fetcher = FakeFetcher()

    outcome = build_scanner(repository, checkpoint, fetcher).scan()

    assert fetcher.requested == []
    assert outcome.did_complete is True
    assert checkpoint.is_marked(ACCOUNT_ID, "Ad:a2")


def test_keywords_and_sitelinks_are_checked(checkpoint):
    repository = InventoryRepository(inventory([account(
        ACCOUNT_ID,
        keywords=[{"id": "k1", "text": "red shoes", "final_url": "https://x.test/kw"}],
        campaign_sitelinks=[{"id": "s1", "link_text": "Sale", "final_url": "https://x.test/sale"}],
    )]))
    outcome = build_scanner(repository, checkpoint, FakeFetcher()).scan()

    by_type = {check.entity_type: check for check in outcome.url_checks}
    assert by_type["Keyword"].keyword_text == "red shoes"
    assert by_type["Sitelink"].sitelink_text == "Sale"
    assert by_type["Sitelink"].campaign_name == "Campaign One"
    assert outcome.did_complete is True
    # The campaign owns the sitelink and is marked; the ad group has none and stays unmarked
    assert checkpoint.is_marked(ACCOUNT_ID, "Campaign:c1")
    assert not checkpoint.is_marked(ACCOUNT_ID, "AdGroup:g1")


def test_paused_ads_are_skipped_unless_enabled_in_options(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[
        ad("a1", "https://x.test/live"),
        ad("a2", "https://x.test/paused", status="PAUSED"),
    ])]))
    fetcher = FakeFetcher()
    build_scanner(repository, checkpoint, fetcher).scan()
    assert fetcher.requested == ["https://x.test/live"]

    other = FakeFetcher()
    checkpoint.clear_account(ACCOUNT_ID)
    build_scanner(repository, checkpoint, other, Options(check_paused_ads=True)).scan()
    assert set(other.requested) == {"https://x.test/live", "https://x.test/paused"}


def test_disabled_entity_types_are_not_scanned(checkpoint):
    repository = InventoryRepository(inventory([account(
        ACCOUNT_ID,
        ads=[ad("a1", "https://x.test/ad")],
        keywords=[{"id": "k1", "text": "kw", "final_url": "https://x.test/kw"}],
    )]))
    fetcher = FakeFetcher()
    options = Options(check_ad_urls=False, check_sitelink_urls=False)
    outcome = build_scanner(repository, checkpoint, fetcher, options).scan()
    assert fetcher.requested == ["https://x.test/kw"]
    assert outcome.did_complete is True


# =============================================================================
# 2. RESUMPTION
# =============================================================================


def test_timeout_after_two_of_five_then_resume_without_reprobing(checkpoint):
    urls = [f"https://x.test/{i}" for i in range(1, 6)]
    repository = InventoryRepository(inventory([account(
        ACCOUNT_ID, ads=[ad(f"a{i}", url) for i, url in enumerate(urls, 1)],
    )]))

    clock = FakeClock()
    first = FakeFetcher(on_fetch=lambda url: clock.advance(450))
    deadline = Deadline(1000, clock=clock)
    outcome = build_scanner(repository, checkpoint, first, deadline=deadline).scan()

    assert outcome.state is ScanState.STOPPED_BY_TIMEOUT
    assert outcome.did_complete is False
    assert first.requested == urls[:2]
    assert [c.url for c in outcome.url_checks] == urls[:2]
    assert checkpoint.marked_keys(ACCOUNT_ID) == {"Ad:a1", "Ad:a2"}

    second = FakeFetcher()
    resumed = build_scanner(repository, checkpoint, second).scan()

    assert second.requested == urls[2:]
    assert resumed.did_complete is True


def test_deadline_is_checked_before_each_request_within_an_entity(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[
        ad("a1", "https://x.test/?v={ifmobile:m}{ifnotmobile:d}"),
    ])]))

    clock = FakeClock()
    fetcher = FakeFetcher(on_fetch=lambda url: clock.advance(950))
    outcome = build_scanner(repository, checkpoint, fetcher, deadline=Deadline(1000, clock=clock)).scan()

    assert outcome.state is ScanState.STOPPED_BY_TIMEOUT
    assert len(fetcher.requested) == 1
    assert [c.url for c in outcome.url_checks] == fetcher.requested
    assert "Ad:a1" not in checkpoint.marked_keys(ACCOUNT_ID)


def test_rescan_in_same_cycle_makes_no_requests(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[
        ad("a1", "https://x.test/1"),
        ad("a2", "https://x.test/2"),
    ])]))
    build_scanner(repository, checkpoint, FakeFetcher()).scan()

    spy = FakeFetcher()
    outcome = build_scanner(repository, checkpoint, spy).scan()

    assert spy.requested == []
    assert outcome.url_checks == []
    assert outcome.did_complete is True


def test_completion_leaves_no_unmarked_entities(checkpoint):
    repository = InventoryRepository(inventory([account(
        ACCOUNT_ID,
        ads=[ad("a1", "https://x.test/1")],
        keywords=[{"id": "k1", "text": "kw", "final_url": "https://x.test/kw"}],
    )]))
    options = Options()
    outcome = build_scanner(repository, checkpoint, FakeFetcher(), options).scan()

    assert outcome.did_complete is True
    source = EntityUrlSource(repository, checkpoint, ACCOUNT_ID, options)
    assert not source.ads().has_next()
    assert not source.keywords().has_next()


def test_truncated_listing_stops_by_limit_and_continues_next_run(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[
        ad("a1", "https://x.test/1"),
        ad("a2", "https://x.test/2"),
        ad("a3", "https://x.test/3"),
    ])]), page_limit=2)

    first = build_scanner(repository, checkpoint, FakeFetcher()).scan()
    assert first.state is ScanState.STOPPED_BY_LIMIT
    assert first.did_complete is False
    assert len(first.url_checks) == 2

    fetcher = FakeFetcher()
    second = build_scanner(repository, checkpoint, fetcher).scan()
    assert fetcher.requested == ["https://x.test/3"]
    assert second.did_complete is True


# =============================================================================
# 3. QUOTA STOPS
# =============================================================================


def test_daily_quota_stops_scan_and_keeps_results(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[
        ad("a1", "https://x.test/1"),
        ad("a2", "https://x.test/2"),
    ])]))
    fetcher = FakeFetcher({"https://x.test/2": quota_exhausted()})

    outcome = build_scanner(repository, checkpoint, fetcher).scan()

    assert outcome.state is ScanState.STOPPED_BY_QUOTA
    assert outcome.did_complete is False
    assert [c.url for c in outcome.url_checks] == ["https://x.test/1"]
    assert not checkpoint.is_marked(ACCOUNT_ID, "Ad:a2")


def test_exhausted_rate_limit_retries_stop_scan(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[ad("a1", "https://x.test/1")])]))
    fetcher = FakeFetcher(default=0, responses={"https://x.test/1": rate_limited()})

    outcome = build_scanner(repository, checkpoint, fetcher).scan()

    assert outcome.state is ScanState.STOPPED_BY_QPS
    assert outcome.url_checks == []
    assert not checkpoint.is_marked(ACCOUNT_ID, "Ad:a1")


# =============================================================================
# 4. WORKER ENTRY POINT
# =============================================================================


def test_process_account_speaks_json(checkpoint):
    repository = InventoryRepository(inventory([account(ACCOUNT_ID, ads=[ad("a1", "https://x.test/1")])]))
    context = ScanContext(
        repository=repository,
        checkpoint=checkpoint,
        probe=make_probe(FakeFetcher({"https://x.test/1": 500})),
        deadline=Deadline(1800, clock=FakeClock()),
    )

    payload = process_account(ACCOUNT_ID, Options().to_json(), context)
    outcome = AccountOutcome.from_json(payload)

    assert outcome.account_id == ACCOUNT_ID
    assert outcome.did_complete is True
    assert outcome.url_checks[0].response_code == 500
