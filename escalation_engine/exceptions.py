"""
Escalation engine exceptions.

Taxonomy:
- ConfigurationError: the run cannot start (settings unreadable/invalid).
  Aborts the whole run and surfaces to the invoker as a failure.
- ApplicabilityError: one subject's audience predicate cannot be evaluated.
  The subject is excluded and the run continues.

Delivery errors and ledger conflicts are NOT exceptions: they are reported as
ChannelResult / RecordOutcome values so a single pair never aborts a run.
"""


class EscalationError(Exception):
    """Base class for escalation engine errors."""

    pass


class ConfigurationError(EscalationError):
    """Raised when the escalation configuration cannot be loaded."""

    pass


class ApplicabilityError(EscalationError):
    """Raised when an obligation's audience cannot be evaluated for a subject."""

    def __init__(self, obligation_id, subject_id, reason: str):
        self.obligation_id = obligation_id
        self.subject_id = subject_id
        self.reason = reason
        super().__init__(
            f"Cannot evaluate obligation {obligation_id} for subject {subject_id}: {reason}"
        )
