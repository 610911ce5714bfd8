# [TESTER] v1

from __future__ import annotations

import asyncio

import pytest

from silverback.integration.interfaces import LedgerOperation, OpKind, burn, mint, transfer
from silverback.integration.memory_ledger import InMemoryLedger, LedgerReadError


def _ledger() -> InMemoryLedger:
    return InMemoryLedger.from_fixture(
        {
            "tokens": {"keeta_aaa": {"decimals": 9, "symbol": "KTA"}, "keeta_bbb": {"decimals": 6}},
            "balances": {"keeta_alice": {"keeta_aaa": "1000", "keeta_bbb": 50}},
        }
    )


def test_fixture_seeds_metadata_and_balances() -> None:
    ledger = _ledger()
    meta = asyncio.run(ledger.get_token_metadata("keeta_aaa"))
    assert (meta.decimals, meta.symbol) == (9, "KTA")
    assert asyncio.run(ledger.get_token_balance("keeta_alice", "keeta_aaa")) == 1000
    assert asyncio.run(ledger.get_total_supply("keeta_bbb")) == 50
    with pytest.raises(LedgerReadError):
        asyncio.run(ledger.get_token_metadata("keeta_zzz"))


def test_submit_is_all_or_nothing() -> None:
    ledger = _ledger()
    ops = [
        transfer("keeta_aaa", 400, "keeta_alice", "keeta_bob"),
        transfer("keeta_bbb", 51, "keeta_alice", "keeta_bob"),
    ]
    receipt = asyncio.run(ledger.submit(ops, signer="keeta_alice"))
    assert not receipt.ok
    assert "insufficient balance" in (receipt.error or "")
    assert ledger.balances.get("keeta_alice", "keeta_aaa") == 1000
    assert len(ledger.submissions) == 0


def test_submit_checks_signer_and_permissions() -> None:
    ledger = _ledger()
    stolen = asyncio.run(ledger.submit([transfer("keeta_aaa", 1, "keeta_alice", "keeta_bob")], signer="keeta_bob"))
    assert not stolen.ok
    on_behalf = asyncio.run(
        ledger.submit([transfer("keeta_aaa", 1, "keeta_alice", "keeta_bob", on_behalf=True)], signer="keeta_bob")
    )
    assert not on_behalf.ok
    minted = asyncio.run(ledger.submit([mint("keeta_aaa", 1, "keeta_bob")], signer="keeta_bob"))
    assert minted.error == "token keeta_aaa is not mintable"


def test_allocated_pool_accounts_allow_lp_mint_and_on_behalf_transfers() -> None:
    ledger = _ledger()
    pool, lp = asyncio.run(ledger.allocate_pool_accounts("keeta_aaa:keeta_bbb", "keeta_alice", lp_decimals=9))
    assert asyncio.run(ledger.get_token_metadata(lp)).decimals == 9

    first = asyncio.run(
        ledger.submit(
            [transfer("keeta_aaa", 100, "keeta_alice", pool), mint(lp, 10, "keeta_alice")],
            signer="keeta_alice",
        )
    )
    second = asyncio.run(
        ledger.submit(
            [burn(lp, 5, "keeta_alice"), transfer("keeta_aaa", 50, pool, "keeta_alice", on_behalf=True)],
            signer="keeta_alice",
        )
    )
    assert first.ok and second.ok
    assert first.tx_id != second.tx_id
    assert ledger.balances.get(pool, "keeta_aaa") == 50
    assert asyncio.run(ledger.get_total_supply(lp)) == 5


def test_operation_shapes_are_validated() -> None:
    with pytest.raises(ValueError):
        LedgerOperation(kind=OpKind.TRANSFER, token="t", amount=1, source="a")
    with pytest.raises(ValueError):
        LedgerOperation(kind=OpKind.MINT, token="t", amount=0, destination="a")
    with pytest.raises(ValueError):
        LedgerOperation(kind=OpKind.BURN, token="t", amount=1, source="a", destination="b")
    assert transfer("t", 5, "a", "b", on_behalf=True).to_dict() == {
        "kind": "TRANSFER",
        "token": "t",
        "amount": "5",
        "source": "a",
        "destination": "b",
        "on_behalf": True,
    }


def test_empty_submission_is_rejected() -> None:
    assert not asyncio.run(_ledger().submit([], signer="keeta_alice")).ok


def test_submission_log_is_bounded_and_ids_stay_unique() -> None:
    ledger = InMemoryLedger(submission_log_limit=2)
    ledger.register_token("keeta_aaa", 9, "KTA")
    ledger.credit("keeta_alice", "keeta_aaa", 10)
    tx_ids = []
    for _ in range(3):
        receipt = asyncio.run(ledger.submit([transfer("keeta_aaa", 1, "keeta_alice", "keeta_bob")], signer="keeta_alice"))
        assert receipt.ok
        tx_ids.append(receipt.tx_id)
    assert len(set(tx_ids)) == 3
    assert [tx for tx, _ in ledger.submissions] == tx_ids[1:]
    assert ledger.balances.get("keeta_bob", "keeta_aaa") == 3
