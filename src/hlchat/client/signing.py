"""Wallet signing capability used by the room client."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount


@runtime_checkable
class WalletSigner(Protocol):
    """Anything that can ``personal_sign`` a string for a wallet address."""

    @property
    def address(self) -> str: ...

    async def sign_message(self, text: str) -> str: ...


class LocalWalletSigner:
    """Signs with a private key held in process, for bots and tests."""

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str | bytes) -> LocalWalletSigner:
        return cls(Account.from_key(private_key))

    @classmethod
    def generate(cls) -> LocalWalletSigner:
        return cls(Account.create())

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_message(self, text: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=text))
        return "0x" + bytes(signed.signature).hex()
