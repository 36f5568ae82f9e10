from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from invoice_engine.pattern_store import DuplicatePatternError, PatternStore, RegistryUnavailableError
from schemas.extraction_schema import PatternCategory, RuleDraft


def _draft(name: str, **overrides: object) -> RuleDraft:
    payload: dict[str, object] = {
        "name": name,
        "category": PatternCategory.INVOICE_NUMBER,
        "regex": r"INV-(\d+)",
    }
    payload.update(overrides)
    return RuleDraft(**payload)


def test_insert_and_load_round_trip_keeps_empty_flags(tmp_path: Path) -> None:
    store = PatternStore(db_path=tmp_path / "patterns.db")
    created = store.insert_rule(_draft("CaseSensitive", flags=""))
    default = store.insert_rule(_draft("DefaultFlags"))

    loaded = {rule.name: rule for rule in store.load_rules()}
    assert loaded["CaseSensitive"].flags == ""
    assert loaded["DefaultFlags"].flags is None
    assert created.id != default.id
    assert store.count_rules() == 2


def test_name_uniqueness_is_case_insensitive(tmp_path: Path) -> None:
    store = PatternStore(db_path=tmp_path / "patterns.db")
    rule = store.insert_rule(_draft("Invoice_Hash"))

    assert store.name_exists("invoice_hash")
    assert not store.name_exists("INVOICE_HASH", exclude_id=rule.id)
    with pytest.raises(DuplicatePatternError):
        store.insert_rule(_draft("INVOICE_HASH"))


def test_batch_insert_is_atomic(tmp_path: Path) -> None:
    store = PatternStore(db_path=tmp_path / "patterns.db")
    with pytest.raises(DuplicatePatternError):
        store.insert_rules([_draft("One"), _draft("Two"), _draft("one")])
    assert store.count_rules() == 0


def test_update_toggle_and_delete(tmp_path: Path) -> None:
    store = PatternStore(db_path=tmp_path / "patterns.db")
    rule = store.insert_rule(_draft("Editable"))

    updated = store.update_rule(rule.id, _draft("Editable", priority=3, confidence_weight=0.6))
    assert updated is not None
    assert updated.priority == 3
    assert updated.confidence_weight == 0.6

    toggled = store.set_active(rule.id, False)
    assert toggled is not None and toggled.is_active is False

    assert store.update_rule(999, _draft("Ghost")) is None
    assert store.set_active(999, True) is None
    assert store.delete_rule(rule.id) is True
    assert store.delete_rule(rule.id) is False
    assert store.get_rule(rule.id) is None


def test_unreadable_store_raises_registry_unavailable(tmp_path: Path) -> None:
    db_path = tmp_path / "patterns.db"
    store = PatternStore(db_path=db_path)
    db_path.unlink()
    db_path.mkdir()

    with pytest.raises(RegistryUnavailableError):
        store.load_rules()


def test_concurrent_inserts_with_same_name_only_one_wins(tmp_path: Path) -> None:
    store = PatternStore(db_path=tmp_path / "patterns.db")

    def _insert(worker: int) -> str:
        try:
            store.insert_rule(_draft("Contested", priority=worker + 1))
        except DuplicatePatternError:
            return "duplicate"
        return "inserted"

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(_insert, range(6)))

    assert results.count("inserted") == 1
    assert results.count("duplicate") == 5
    assert store.count_rules() == 1
