# Overview: Tagged outcome records returned by the idempotent financial jobs.

from __future__ import annotations

from dataclasses import dataclass, field

CREATED = "CREATED"
UPDATED = "UPDATED"
SKIPPED_EXISTING = "SKIPPED_EXISTING"
SKIPPED_AMBIGUOUS = "SKIPPED_AMBIGUOUS"

OUTCOME_KINDS = (CREATED, UPDATED, SKIPPED_EXISTING, SKIPPED_AMBIGUOUS)


@dataclass(frozen=True)
class Outcome:
    """
    What a job did (or, in dry-run, would do) for one source record.

    kind is one of CREATED / UPDATED / SKIPPED_EXISTING / SKIPPED_AMBIGUOUS.
    """
    kind: str
    reference_number: str
    transaction_id: int | None = None
    amount_cents: int | None = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "reference_number": self.reference_number,
            "transaction_id": self.transaction_id,
            "amount_cents": self.amount_cents,
            "detail": self.detail,
        }


def summarize(outcomes: list[Outcome]) -> dict:
    counts = {kind: 0 for kind in OUTCOME_KINDS}
    for outcome in outcomes:
        counts[outcome.kind] += 1
    return counts
