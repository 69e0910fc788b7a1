"""
Settlement -- hand-off of completed distributions to the custody service.

Responsibility:
    Turns the line items of a COMPLETED run into settlement instructions
    ("investor X is owed N minor units of currency C for run R") and passes
    them to a SettlementSink.  Moving money, and retrying that, belongs to
    the external wallet/custody service, not to the ledger.

Architecture position:
    Kernel > Services -- outbound port.  Called by DistributionExecutor only
    after the run is durably COMPLETED and the asset lock is released.

Failure modes:
    - A sink may raise; the executor logs the failure and does not retry.
      The ledger state is already committed and remains authoritative.
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from ownership_kernel.db.types import format_minor_units
from ownership_kernel.domain.dtos import DistributionRunRecord
from ownership_kernel.logging_config import get_logger

logger = get_logger("services.settlement")


@dataclass(frozen=True)
class SettlementInstruction:
    """One payout owed to one investor for one completed run."""

    run_id: UUID
    line_item_id: UUID
    investor_id: str
    amount: int
    currency: str


def instructions_for(run: DistributionRunRecord) -> tuple[SettlementInstruction, ...]:
    """One instruction per line item, in line-item order."""
    return tuple(
        SettlementInstruction(
            run_id=run.id,
            line_item_id=item.id,
            investor_id=item.investor_id,
            amount=item.amount,
            currency=item.currency,
        )
        for item in run.line_items
    )


class SettlementSink(ABC):
    """Receiver of settlement instructions (custody service adapter)."""

    @abstractmethod
    def emit(self, instructions: Sequence[SettlementInstruction]) -> None:
        """Accept the instructions for one run."""
        ...


class LoggingSettlementSink(SettlementSink):
    """Default sink: records every instruction in the structured log."""

    def emit(self, instructions: Sequence[SettlementInstruction]) -> None:
        for instruction in instructions:
            logger.info(
                "settlement_instruction_emitted",
                extra={
                    "run_id": str(instruction.run_id),
                    "line_item_id": str(instruction.line_item_id),
                    "investor_id": instruction.investor_id,
                    "amount": instruction.amount,
                    "currency": instruction.currency,
                    "display_amount": format_minor_units(
                        instruction.amount, instruction.currency
                    ),
                },
            )


class CollectingSettlementSink(SettlementSink):
    """
    In-memory sink.

    Used by tests and by batch jobs that hand instructions to the custody
    service in bulk.  Safe to share across threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._instructions: list[SettlementInstruction] = []

    def emit(self, instructions: Sequence[SettlementInstruction]) -> None:
        with self._lock:
            self._instructions.extend(instructions)

    @property
    def instructions(self) -> list[SettlementInstruction]:
        with self._lock:
            return list(self._instructions)

    def for_run(self, run_id: UUID) -> list[SettlementInstruction]:
        return [i for i in self.instructions if i.run_id == run_id]

    def drain(self) -> list[SettlementInstruction]:
        """Return everything collected so far and forget it."""
        with self._lock:
            drained, self._instructions = self._instructions, []
        return drained
