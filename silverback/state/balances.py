"""
Token balances held by ledger accounts.

Backs the in-memory ledger. Pool accounts and LP tokens are ordinary holders
and tokens here; zero balances are not stored.
"""

from typing import Dict, Tuple


Holder = str
TokenId = str
Amount = int


class BalanceTable:
    def __init__(self) -> None:
        self._balances: Dict[Tuple[Holder, TokenId], Amount] = {}

    def get(self, holder: Holder, token: TokenId) -> Amount:
        return self._balances.get((holder, token), 0)

    def _put(self, holder: Holder, token: TokenId, amount: Amount) -> None:
        if amount:
            self._balances[(holder, token)] = amount
        else:
            self._balances.pop((holder, token), None)

    def credit(self, holder: Holder, token: TokenId, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"credit amount must be non-negative: {amount}")
        self._put(holder, token, self.get(holder, token) + amount)

    def debit(self, holder: Holder, token: TokenId, amount: Amount) -> None:
        """Raises ValueError (and leaves the balance untouched) on overdraft."""
        if amount < 0:
            raise ValueError(f"debit amount must be non-negative: {amount}")
        held = self.get(holder, token)
        if held < amount:
            raise ValueError(f"insufficient balance: {holder} holds {held} {token}, needs {amount}")
        self._put(holder, token, held - amount)

    def move(self, source: Holder, destination: Holder, token: TokenId, amount: Amount) -> None:
        self.debit(source, token, amount)
        self.credit(destination, token, amount)

    def total_for_token(self, token: TokenId) -> Amount:
        """Circulating supply of `token` (sum over holders)."""
        return sum(amount for (_, t), amount in self._balances.items() if t == token)

    def get_all_balances(self) -> Dict[Tuple[Holder, TokenId], Amount]:
        return dict(self._balances)

    def copy(self) -> "BalanceTable":
        out = BalanceTable()
        out._balances = dict(self._balances)
        return out

    def __repr__(self) -> str:
        return f"BalanceTable({len(self._balances)} entries)"
