# [TESTER] v1

from __future__ import annotations

import pytest

from silverback.core.errors import InvalidInput
from silverback.core.fees import ProtocolFee, apply_protocol_fee


def test_protocol_fee_is_deducted_before_swap() -> None:
    f = apply_protocol_fee(1000, 30)
    assert (f.gross, f.fee, f.net) == (1000, 3, 997)


def test_protocol_fee_floors_in_favour_of_trader() -> None:
    assert apply_protocol_fee(333, 30).fee == 0
    assert apply_protocol_fee(334, 30).fee == 1
    assert apply_protocol_fee(1, 10_000).fee == 1


def test_protocol_fee_zero_for_non_positive_input() -> None:
    assert apply_protocol_fee(0, 30) == ProtocolFee(gross=0, fee=0, net=0)


def test_protocol_fee_validates_arguments() -> None:
    with pytest.raises(InvalidInput):
        apply_protocol_fee(1000, 10_001)
    with pytest.raises(TypeError):
        apply_protocol_fee(1000.0, 30)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        apply_protocol_fee(1000, True)  # type: ignore[arg-type]


def test_protocol_fee_record_enforces_conservation() -> None:
    with pytest.raises(ValueError):
        ProtocolFee(gross=10, fee=3, net=6)
