import pytest

from enrollflow.registration.ledger import (
    AccountLinkStore,
    AttemptLedger,
    AttemptsExhausted,
    registration_key,
)
from enrollflow.store.models import AccountLink
from enrollflow.store.slots import MemorySlotStore


def test_registration_key():
    assert registration_key("+919876543210", "pay_1") == "+919876543210_pay_1"


def test_begin_counts_up_to_limit():
    ledger = AttemptLedger(3)
    assert [ledger.begin("k") for _ in range(3)] == [1, 2, 3]
    with pytest.raises(AttemptsExhausted):
        ledger.begin("k")
    assert ledger.count("k") == 3


def test_success_and_reset_clear_the_counter():
    ledger = AttemptLedger(2)
    ledger.begin("a")
    ledger.record("a", {"attempt": 1, "success": False})
    assert ledger.history("a") == [{"attempt": 1, "success": False}]

    ledger.clear_on_success("a")
    assert ledger.count("a") == 0
    assert ledger.history("a") == []

    ledger.begin("b")
    ledger.begin("b")
    ledger.reset("b")
    assert ledger.begin("b") == 1


def test_record_for_unknown_key_is_ignored():
    ledger = AttemptLedger(2)
    ledger.record("ghost", {"attempt": 1})
    assert ledger.history("ghost") == []


def test_account_links_accumulate():
    links = AccountLinkStore(MemorySlotStore())
    links.add(AccountLink("enr_1", "sec_1", "+919876543210", 1))
    links.add(AccountLink("enr_2", "sec_2", "+919876543210", 2))
    got = links.links_for("+919876543210")
    assert [l.secondaryEnrollmentId for l in got] == ["sec_1", "sec_2"]
    assert links.links_for("+910000000000") == []


def test_corrupt_link_slot_reads_empty():
    store = MemorySlotStore()
    store.set("account_linking_+919876543210", "not json")
    assert AccountLinkStore(store).links_for("+919876543210") == []
