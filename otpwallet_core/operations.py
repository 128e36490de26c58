"""
Wallet operations and their canonical parameter hashes.

Each operation family carries exactly the fields the on-chain verifier hashes
for it.  ``compute_params_hash`` is the single place that maps a family to its
byte layout (Keccak-256 over fixed-width words):

    GeneralOperation          op ‖ token_type ‖ contract ‖ token_id ‖ dest ‖ amount ‖ data
    DataOperation             data
    RecoveryAddressOperation  dest
    ForwardOperation          address
    RecoverOperation          op
    SpendingLimitOperation    amount
    TransferOperation         dest ‖ amount

Every operation is revealed with the same seven fields
(``reveal_params``); fields a family does not carry take their null value.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from otpwallet_core.hashing import (
    EMPTY_ADDRESS,
    address_word,
    keccak256,
    normalize_address,
    u256,
)


class OperationType(IntEnum):
    TRACK = 0
    UNTRACK = 1
    TRANSFER_TOKEN = 2
    OVERRIDE_TRACK = 3
    TRANSFER = 4
    SET_RECOVERY_ADDRESS = 5
    RECOVER = 6
    DISPLACE = 7
    FORWARD = 8
    RECOVER_SELECTED_TOKENS = 9
    BUY_DOMAIN = 10
    COMMAND = 11
    BACKLINK_ADD = 12
    BACKLINK_DELETE = 13
    BACKLINK_OVERRIDE = 14
    RENEW_DOMAIN = 15
    TRANSFER_DOMAIN = 16
    RECLAIM_REVERSE_DOMAIN = 17
    RECLAIM_DOMAIN_FROM_BACKLINK = 18
    SIGN = 19
    REVOKE = 20
    CALL = 21
    BATCH = 22
    NOOP = 23
    CHANGE_SPENDING_LIMIT = 24
    JUMP_SPENDING_LIMIT = 25


class TokenType(IntEnum):
    ERC20 = 0
    ERC721 = 1
    ERC1155 = 2
    NONE = 3


GENERAL_OPERATIONS = frozenset({
    OperationType.TRACK,
    OperationType.UNTRACK,
    OperationType.TRANSFER_TOKEN,
    OperationType.OVERRIDE_TRACK,
    OperationType.DISPLACE,
    OperationType.RECOVER_SELECTED_TOKENS,
    OperationType.BUY_DOMAIN,
    OperationType.RENEW_DOMAIN,
    OperationType.TRANSFER_DOMAIN,
    OperationType.RECLAIM_REVERSE_DOMAIN,
    OperationType.RECLAIM_DOMAIN_FROM_BACKLINK,
    OperationType.SIGN,
    OperationType.REVOKE,
    OperationType.CALL,
    OperationType.BATCH,
    OperationType.NOOP,
})

DATA_OPERATIONS = frozenset({
    OperationType.BACKLINK_ADD,
    OperationType.BACKLINK_DELETE,
    OperationType.BACKLINK_OVERRIDE,
    OperationType.COMMAND,
})

SPENDING_LIMIT_OPERATIONS = frozenset({
    OperationType.CHANGE_SPENDING_LIMIT,
    OperationType.JUMP_SPENDING_LIMIT,
})


def _check_kind(op: OperationType, allowed: frozenset, family: str) -> OperationType:
    op = OperationType(op)
    if op not in allowed:
        raise ValueError(f"{op.name} is not a {family} operation")
    return op


# ── Operation families ──────────────────────────────────────────

@dataclass(frozen=True)
class GeneralOperation:
    operation_type: OperationType
    token_type: TokenType = TokenType.NONE
    contract_address: str = EMPTY_ADDRESS
    token_id: int = 0
    dest: str = EMPTY_ADDRESS
    amount: int = 0
    data: bytes = b""

    def __post_init__(self):
        object.__setattr__(
            self, "operation_type",
            _check_kind(self.operation_type, GENERAL_OPERATIONS, "general"),
        )
        object.__setattr__(self, "token_type", TokenType(self.token_type))
        object.__setattr__(self, "contract_address", normalize_address(self.contract_address))
        object.__setattr__(self, "dest", normalize_address(self.dest))
        object.__setattr__(self, "data", bytes(self.data))
        u256(self.token_id)
        u256(self.amount)

    @classmethod
    def transfer_token(
        cls,
        token_type: TokenType,
        contract_address: str,
        dest: str,
        token_id: int = 0,
        amount: int = 0,
    ) -> GeneralOperation:
        """ERC721 transfers carry no amount."""
        if token_type == TokenType.ERC721:
            amount = 0
        return cls(
            OperationType.TRANSFER_TOKEN, token_type, contract_address,
            token_id, dest, amount,
        )


@dataclass(frozen=True)
class DataOperation:
    operation_type: OperationType
    data: bytes = b""

    def __post_init__(self):
        object.__setattr__(
            self, "operation_type",
            _check_kind(self.operation_type, DATA_OPERATIONS, "data"),
        )
        object.__setattr__(self, "data", bytes(self.data))


@dataclass(frozen=True)
class RecoveryAddressOperation:
    dest: str

    operation_type = OperationType.SET_RECOVERY_ADDRESS

    def __post_init__(self):
        object.__setattr__(self, "dest", normalize_address(self.dest))


@dataclass(frozen=True)
class ForwardOperation:
    address: str

    operation_type = OperationType.FORWARD

    def __post_init__(self):
        object.__setattr__(self, "address", normalize_address(self.address))


@dataclass(frozen=True)
class RecoverOperation:
    operation_type = OperationType.RECOVER


@dataclass(frozen=True)
class SpendingLimitOperation:
    operation_type: OperationType
    amount: int

    def __post_init__(self):
        object.__setattr__(
            self, "operation_type",
            _check_kind(self.operation_type, SPENDING_LIMIT_OPERATIONS, "spending limit"),
        )
        u256(self.amount)


@dataclass(frozen=True)
class TransferOperation:
    dest: str
    amount: int

    operation_type = OperationType.TRANSFER

    def __post_init__(self):
        object.__setattr__(self, "dest", normalize_address(self.dest))
        u256(self.amount)


OperationParams = Union[
    GeneralOperation,
    DataOperation,
    RecoveryAddressOperation,
    ForwardOperation,
    RecoverOperation,
    SpendingLimitOperation,
    TransferOperation,
]


# ── Canonical encoding ──────────────────────────────────────────

def encode_params(params: OperationParams) -> bytes:
    """Preimage of the parameter hash for ``params``."""
    if isinstance(params, GeneralOperation):
        return (
            u256(params.operation_type)
            + u256(params.token_type)
            + address_word(params.contract_address)
            + u256(params.token_id)
            + address_word(params.dest)
            + u256(params.amount)
            + params.data
        )
    elif isinstance(params, DataOperation):
        return params.data
    elif isinstance(params, RecoveryAddressOperation):
        return address_word(params.dest)
    elif isinstance(params, ForwardOperation):
        return address_word(params.address)
    elif isinstance(params, RecoverOperation):
        return u256(OperationType.RECOVER)
    elif isinstance(params, SpendingLimitOperation):
        return u256(params.amount)
    elif isinstance(params, TransferOperation):
        return address_word(params.dest) + u256(params.amount)
    raise TypeError(f"Unknown operation type: {type(params).__name__}")


def compute_params_hash(params: OperationParams) -> bytes:
    return keccak256(encode_params(params))


def reveal_params(params: OperationParams) -> tuple:
    """
    The seven reveal fields:
    (operation_type, token_type, contract_address, token_id, dest, amount, data).
    """
    fields = {
        "operation_type": int(params.operation_type),
        "token_type": int(TokenType.NONE),
        "contract_address": EMPTY_ADDRESS,
        "token_id": 0,
        "dest": EMPTY_ADDRESS,
        "amount": 0,
        "data": b"",
    }
    if isinstance(params, GeneralOperation):
        fields.update(
            token_type=int(params.token_type),
            contract_address=params.contract_address,
            token_id=params.token_id,
            dest=params.dest,
            amount=params.amount,
            data=params.data,
        )
    elif isinstance(params, DataOperation):
        fields["data"] = params.data
    elif isinstance(params, RecoveryAddressOperation):
        fields["dest"] = params.dest
    elif isinstance(params, ForwardOperation):
        fields["dest"] = params.address
    elif isinstance(params, SpendingLimitOperation):
        fields["amount"] = params.amount
    elif isinstance(params, TransferOperation):
        fields.update(dest=params.dest, amount=params.amount)
    elif not isinstance(params, RecoverOperation):
        raise TypeError(f"Unknown operation type: {type(params).__name__}")
    return (
        fields["operation_type"],
        fields["token_type"],
        fields["contract_address"],
        fields["token_id"],
        fields["dest"],
        fields["amount"],
        fields["data"],
    )


def params_from_reveal(fields: tuple) -> OperationParams:
    """Rebuild the operation a verifier would hash from the seven reveal fields."""
    op, token_type, contract_address, token_id, dest, amount, data = fields
    op = OperationType(op)
    if op in GENERAL_OPERATIONS:
        return GeneralOperation(op, token_type, contract_address, token_id, dest, amount, data)
    if op in DATA_OPERATIONS:
        return DataOperation(op, data)
    if op == OperationType.SET_RECOVERY_ADDRESS:
        return RecoveryAddressOperation(dest)
    if op == OperationType.FORWARD:
        return ForwardOperation(dest)
    if op == OperationType.RECOVER:
        return RecoverOperation()
    if op in SPENDING_LIMIT_OPERATIONS:
        return SpendingLimitOperation(op, amount)
    return TransferOperation(dest, amount)
