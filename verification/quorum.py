"""
Guest quorum tracking.

A booking with N adults needs N successful selfie verifications before the
session counts as verified. The tracker owns expected_guest_count,
verified_guest_count and the requires-additional-guest flag of a session.

Successful selfies are counted, not deduplicated by identity: one guest
submitting several passing selfies can fill several slots. The count is
capped at the expected number of guests.
"""
from typing import Optional

from .models import MAX_GUESTS, MIN_GUESTS, VerificationSession


def clamp_guest_count(value) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        count = MIN_GUESTS
    return max(MIN_GUESTS, min(MAX_GUESTS, count))


class GuestQuorum:
    def __init__(self, session: VerificationSession):
        self.session = session

    @property
    def expected(self) -> int:
        return clamp_guest_count(self.session.expected_guest_count)

    @property
    def verified(self) -> int:
        return max(0, min(self.session.verified_guest_count, self.expected))

    @property
    def remaining(self) -> int:
        return max(self.expected - self.verified, 0)

    @property
    def requires_additional_guest(self) -> bool:
        return self.session.requires_additional_guest

    def set_expected_from_reservation(self, adults, override: Optional[int] = None) -> int:
        """Set the expected guest count; a manual override takes precedence."""
        source = override if override is not None else adults
        self.session.expected_guest_count = clamp_guest_count(source)
        # Keep verified <= expected when the expectation shrinks
        self.session.verified_guest_count = self.verified
        self._recompute()
        return self.session.expected_guest_count

    def record_verification_outcome(self, success: bool) -> int:
        if success:
            self.session.verified_guest_count = min(self.verified + 1, self.expected)
        self._recompute()
        return self.session.verified_guest_count

    def next_selfie_slot_index(self) -> int:
        """1-based storage slot for the next selfie attempt."""
        return min(self.verified + 1, MAX_GUESTS)

    def _recompute(self) -> None:
        self.session.requires_additional_guest_override = None

    def to_dict(self):
        return {
            "expected": self.expected,
            "verified": self.verified,
            "requires_additional_guest": self.requires_additional_guest,
            "remaining": self.remaining,
        }
