"""
vestledger/core/schedule.py

Schedule Generator.

    generate(start_time, round_count, round_span, total_entitlement, confirmed_round)

Round i unlocks at:

    start_time + (round_span * i) // round_count

Integer division truncates sub-second drift, so spacing between rounds
can differ by one second. Unlock times are non-decreasing in i.

Entitlement per round is total_entitlement // round_count. The last
round (i == round_count) also carries total_entitlement % round_count,
so rounds 1..round_count sum to total_entitlement exactly. Round 0 is
emitted with the flat installment; the reconciler replaces it with the
bonus.

The returned Schedule is lazy and restartable: every iteration
recomputes entries from the parameters. Nothing is cached.
"""

from typing import Iterator

from vestledger.core.exceptions import ConfigurationError
from vestledger.core.models import ScheduleEntry


def _check_parameters(
    start_time:        int,
    round_count:       int,
    round_span:        int,
    total_entitlement: int,
    confirmed_round:   int,
) -> None:
    for name, value in (
        ("start_time", start_time),
        ("round_count", round_count),
        ("round_span", round_span),
        ("total_entitlement", total_entitlement),
        ("confirmed_round", confirmed_round),
    ):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{name} must be an integer", {name: repr(value)})

    if round_count <= 0:
        raise ConfigurationError("round_count must be > 0", {"round_count": round_count})
    if total_entitlement < 0:
        raise ConfigurationError(
            "total_entitlement must be >= 0",
            {"total_entitlement": total_entitlement},
        )
    if round_span < 0:
        raise ConfigurationError("round_span must be >= 0", {"round_span": round_span})
    if confirmed_round < 0:
        raise ConfigurationError(
            "confirmed_round must be >= 0",
            {"confirmed_round": confirmed_round},
        )


class Schedule:
    """Finite, restartable sequence of ScheduleEntry."""

    def __init__(
        self,
        start_time:        int,
        round_count:       int,
        round_span:        int,
        total_entitlement: int,
        confirmed_round:   int = 0,
    ) -> None:
        _check_parameters(start_time, round_count, round_span, total_entitlement, confirmed_round)
        self.start_time        = start_time
        self.round_count       = round_count
        self.round_span        = round_span
        self.total_entitlement = total_entitlement
        self.confirmed_round   = confirmed_round

    def unlock_time(self, round_index: int) -> int:
        return self.start_time + (self.round_span * round_index) // self.round_count

    def entitlement(self, round_index: int) -> int:
        share = self.total_entitlement // self.round_count
        if round_index == self.round_count:
            share += self.total_entitlement % self.round_count
        return share

    def __iter__(self) -> Iterator[ScheduleEntry]:
        for i in range(self.confirmed_round, self.round_count + 1):
            yield ScheduleEntry(
                round_index=i,
                unlock_time=self.unlock_time(i),
                entitlement=self.entitlement(i),
            )

    def __len__(self) -> int:
        return max(0, self.round_count + 1 - self.confirmed_round)

    def __repr__(self) -> str:
        return (
            f"Schedule(start_time={self.start_time}, round_count={self.round_count}, "
            f"round_span={self.round_span}, total_entitlement={self.total_entitlement}, "
            f"confirmed_round={self.confirmed_round})"
        )


def generate(
    start_time:        int,
    round_count:       int,
    round_span:        int,
    total_entitlement: int,
    confirmed_round:   int = 0,
) -> Schedule:
    """
    Build the schedule for rounds confirmed_round..round_count inclusive.

    Raises ConfigurationError when round_count <= 0, total_entitlement < 0
    or any parameter is not an integer. These are setup bugs, not
    retryable conditions.
    """
    return Schedule(start_time, round_count, round_span, total_entitlement, confirmed_round)
