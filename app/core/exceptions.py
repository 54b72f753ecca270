"""
Workflow-engine exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.  Every error is scoped to
one call; none is fatal to the process and none is retried by the engine.

Families:
    NotFoundError          → 404  (unknown proposal, out-of-range stage)
    ValidationError        → 400  (malformed input, word limit exceeded)
    AuthorizationError     → 403  (role not allowed to decide this stage)
    StateConsistencyError  → 409  (caller's view of the proposal is stale)
    ConflictError          → 409  (concurrent write lost the race)

Usage:
    from app.core.exceptions import ProposalNotFoundError, RoleMismatchError

    raise ProposalNotFoundError(proposal_id=42)
    raise RoleMismatchError(stage_ordinal=2, expected_role="RDD", actual_role="OP")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Proposal", "Stage").
        resource_id: The key that was looked up.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ProposalNotFoundError(NotFoundError):
    """Unknown proposal id.  Never mapped to an empty/default proposal."""

    def __init__(self, proposal_id: int | str | None = None) -> None:
        super().__init__("Proposal", proposal_id)
        self.proposal_id = proposal_id


class StageNotFoundError(NotFoundError):
    """Stage ordinal outside the catalog."""

    def __init__(self, ordinal: int | str | None = None) -> None:
        super().__init__("Stage", ordinal)
        self.ordinal = ordinal


class ProgressReportNotFoundError(NotFoundError):
    """Unknown report id, or a report the caller may not see."""

    def __init__(self, report_id: int | str | None = None) -> None:
        super().__init__("ProgressReport", report_id)
        self.report_id = report_id


class ValidationError(Exception):
    """Raised when input fails validation.  Rejected with no partial effect.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AchievementsTooLongError(ValidationError):
    """Progress-report achievements exceed the word limit.  Never truncated."""

    code = "ERR_ACHIEVEMENTS_TOO_LONG"

    def __init__(self, word_count: int, limit: int) -> None:
        self.word_count = word_count
        self.limit = limit
        super().__init__(
            f"achievements has {word_count} words; the limit is {limit}",
            details={"achievements": f"{word_count} words (max {limit})"},
        )


class AuthorizationError(Exception):
    """Caller is authenticated but not allowed to perform this action."""

    code = "ERR_FORBIDDEN"


class RoleMismatchError(AuthorizationError):
    """Issuer role is not the role that authorizes the stage."""

    code = "ERR_ROLE_MISMATCH"

    def __init__(self, stage_ordinal: int, expected_role: str, actual_role: str | None) -> None:
        self.stage_ordinal = stage_ordinal
        self.expected_role = expected_role
        self.actual_role = actual_role
        super().__init__(
            f"Stage {stage_ordinal} is decided by role '{expected_role}', not '{actual_role}'"
        )


class StateConsistencyError(Exception):
    """The caller acted on a stale view of the proposal.

    The gateway attaches the authoritative derived progress as
    ``current_progress`` so the caller can resynchronise without a second
    round trip.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(self, message: str, proposal_id: int | None = None) -> None:
        self.proposal_id = proposal_id
        self.current_progress: dict | None = None
        super().__init__(message)


class StageAlreadyDecidedError(StateConsistencyError):
    code = "ERR_STAGE_ALREADY_DECIDED"

    def __init__(self, proposal_id: int, stage_ordinal: int, decision: str | None = None) -> None:
        self.stage_ordinal = stage_ordinal
        self.decision = decision
        msg = f"Stage {stage_ordinal} of proposal {proposal_id} is already decided"
        if decision:
            msg += f" ({decision})"
        super().__init__(msg, proposal_id)


class ProposalNotAtStageError(StateConsistencyError):
    code = "ERR_PROPOSAL_NOT_AT_STAGE"

    def __init__(self, proposal_id: int, stage_ordinal: int, current_stage: int, status: str) -> None:
        self.stage_ordinal = stage_ordinal
        self.current_stage = current_stage
        self.status = status
        super().__init__(
            f"Proposal {proposal_id} is not at stage {stage_ordinal} "
            f"(current stage {current_stage}, status {status})",
            proposal_id,
        )


class NotYetImplementingError(StateConsistencyError):
    code = "ERR_NOT_YET_IMPLEMENTING"

    def __init__(self, proposal_id: int, current_stage: int, status: str) -> None:
        self.current_stage = current_stage
        self.status = status
        super().__init__(
            f"Proposal {proposal_id} has not reached Implementation "
            f"(current stage {current_stage}, status {status})",
            proposal_id,
        )


class ConflictError(Exception):
    """A concurrent write to the same resource won the race.  Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field or version that conflicted.
        value: The conflicting value.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} {field}={value!r} was modified concurrently"
        super().__init__(msg)
