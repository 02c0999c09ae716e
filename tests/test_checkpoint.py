"""
CHECKPOINT AND REPOSITORY TESTS

Run: pytest tests/test_checkpoint.py
"""

import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from link_checker.checkpoint import JsonCheckpointStore
from link_checker.entities import AccountFilter, EntityFilter, InventoryRepository, PAUSED
from link_checker.errors import CheckpointUnavailableError

from conftest import account, ad, inventory

# =============================================================================
# 1. ENTITY MARKS
# =============================================================================


def test_marks_survive_a_new_store_instance(tmp_path):
    data_dir = str(tmp_path / "output")
    store = JsonCheckpointStore(data_dir=data_dir)
    store.ensure_label("111")
    store.mark("111", "Ad:a1")
    store.mark("111", "Ad:a1")
    store.flush("111")

    reopened = JsonCheckpointStore(data_dir=data_dir)
    assert reopened.is_marked("111", "Ad:a1")
    assert reopened.marked_keys("111") == {"Ad:a1"}

    on_disk = json.loads((tmp_path / "output" / "111" / "111_checkpoints.json").read_text())
    assert on_disk["marked"] == ["Ad:a1"]
    assert on_disk["label_exists"] is True


def test_marks_are_written_in_batches(tmp_path):
    data_dir = str(tmp_path / "output")
    path = tmp_path / "output" / "111" / "111_checkpoints.json"
    store = JsonCheckpointStore(data_dir=data_dir, flush_every=3)
    store.ensure_label("111")

    store.mark("111", "Ad:a1")
    store.mark("111", "Ad:a2")
    assert json.loads(path.read_text())["marked"] == []
    assert store.marked_keys("111") == {"Ad:a1", "Ad:a2"}

    store.mark("111", "Ad:a3")
    assert json.loads(path.read_text())["marked"] == ["Ad:a1", "Ad:a2", "Ad:a3"]

    store.mark("111", "Ad:a4")
    store.flush("111")
    assert JsonCheckpointStore(data_dir=data_dir).marked_keys("111") == {"Ad:a1", "Ad:a2", "Ad:a3", "Ad:a4"}


def test_accounts_are_marked_independently_from_threads(tmp_path):
    store = JsonCheckpointStore(data_dir=str(tmp_path / "output"), flush_every=10)
    account_ids = [str(n) for n in range(4)]

    def mark_all(account_id):
        for i in range(50):
            store.mark(account_id, f"Ad:{i}")
        store.flush(account_id)

    with ThreadPoolExecutor(max_workers=4) as executor:
        list(executor.map(mark_all, account_ids))

    reopened = JsonCheckpointStore(data_dir=str(tmp_path / "output"))
    for account_id in account_ids:
        assert len(reopened.marked_keys(account_id)) == 50


def test_clear_account_removes_every_mark(checkpoint):
    checkpoint.mark("111", "Ad:a1")
    checkpoint.mark("222", "Ad:b1")
    checkpoint.clear_account("111")
    assert not checkpoint.is_marked("111", "Ad:a1")
    assert checkpoint.is_marked("222", "Ad:b1")


# =============================================================================
# 2. ACCOUNT MARKS
# =============================================================================


def test_account_marks_and_label(checkpoint):
    assert not checkpoint.account_label_exists()
    checkpoint.ensure_account_label()
    checkpoint.mark_account("111")
    checkpoint.mark_account("111")
    assert checkpoint.account_label_exists()
    assert checkpoint.marked_accounts() == ["111"]

    checkpoint.clear_account_marks()
    assert checkpoint.marked_accounts() == []
    assert not checkpoint.account_label_exists()


# =============================================================================
# 3. PREVIEW MODE
# =============================================================================


def test_preview_cannot_create_or_remove_labels(tmp_path):
    store = JsonCheckpointStore(data_dir=str(tmp_path / "output"), preview=True)
    with pytest.raises(CheckpointUnavailableError):
        store.ensure_label("111")
    with pytest.raises(CheckpointUnavailableError):
        store.ensure_account_label()
    with pytest.raises(CheckpointUnavailableError):
        store.clear_account("111")
    with pytest.raises(CheckpointUnavailableError):
        store.clear_account_marks()


def test_preview_marks_stay_in_memory(tmp_path):
    data_dir = str(tmp_path / "output")
    JsonCheckpointStore(data_dir=data_dir).ensure_label("111")

    preview = JsonCheckpointStore(data_dir=data_dir, preview=True)
    preview.ensure_label("111")
    preview.mark("111", "Ad:a1")
    assert preview.is_marked("111", "Ad:a1")
    assert not JsonCheckpointStore(data_dir=data_dir).is_marked("111", "Ad:a1")


# =============================================================================
# 4. INVENTORY REPOSITORY
# =============================================================================


def test_filters_apply_status_url_and_marks(checkpoint):
    repository = InventoryRepository(inventory([account("111", ads=[
        ad("a1", "https://x.test/1"),
        ad("a2", "https://x.test/2", status=PAUSED),
        ad("a3", None),
    ])]))
    checkpoint.mark("111", "Ad:a1")

    def is_marked(entity):
        return checkpoint.is_marked("111", entity.key)

    enabled = repository.ads("111", EntityFilter(require_final_url=True))
    assert [e.id for e in enabled] == ["a1"]

    unmarked = repository.ads("111", EntityFilter.active(True, require_final_url=True, has_label=False), is_marked)
    assert [e.id for e in unmarked] == ["a2"]


def test_page_reports_full_total_when_truncated():
    repository = InventoryRepository(inventory([account("111", ads=[
        ad(f"a{i}", f"https://x.test/{i}") for i in range(5)
    ])]), page_limit=2)
    page = repository.ads("111", EntityFilter())
    assert len(page) == 2
    assert page.total_num_entities == 5


def test_account_filter_ids_cost_and_marks():
    repository = InventoryRepository(inventory([
        account("111", cost=0),
        account("222", cost=10),
        account("333", cost=10),
    ]))
    assert [a.id for a in repository.accounts(AccountFilter(min_cost=0))] == ["222", "333"]
    assert [a.id for a in repository.accounts(AccountFilter(account_ids=("111",)))] == ["111"]
    unmarked = repository.accounts(AccountFilter(has_label=False, limit=1), lambda account_id: account_id == "111")
    assert [a.id for a in unmarked] == ["222"]


def test_inventory_file_round_trip(tmp_path):
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps(inventory([account("111", ads=[ad("a1", "https://x.test/1")])])))
    repository = InventoryRepository.from_file(str(path))
    assert [a.id for a in repository.accounts(AccountFilter())] == ["111"]
    assert [e.final_url for e in repository.ads("111", EntityFilter())] == ["https://x.test/1"]
