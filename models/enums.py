from __future__ import annotations

from enum import Enum


class TradeSide(str, Enum):
    buy = "buy"
    sell = "sell"


class StagingStatus(str, Enum):
    imported = "imported"                      # waiting for strategy / release
    released = "released"                      # row is deleted once this is reached
    rejected_duplicate = "rejected_duplicate"  # collided with an existing transaction
    rejected_error = "rejected_error"          # anything else, see rejection_reason


class AccountingMode(str, Enum):
    aggregated = "aggregated"    # transactions feed the position ledger
    record_only = "record_only"  # transactions are stored, positions untouched


def enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]
