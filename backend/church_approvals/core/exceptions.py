"""Domain errors raised by the approval engine.

Each error carries the HTTP status the API layer answers with and a short
machine-readable code. Infrastructure failures are wrapped into
ApprovalOperationFailed at the store boundary so storage details never
reach the caller.
"""


class ApprovalError(Exception):
    status_code = 400
    code = "approval_error"


# ─── Planning ───

class PlanningFailed(ApprovalError):
    status_code = 422
    code = "planning_failed"


class NoApproversFound(PlanningFailed):
    code = "no_approvers_found"


class SubmissionMismatch(PlanningFailed):
    """The submitted amount, category or organization differs from the stored transaction."""

    code = "submission_mismatch"


# ─── Authority ───

class NotAuthorized(ApprovalError):
    status_code = 403
    code = "not_authorized"


class AlreadyProcessed(ApprovalError):
    status_code = 409
    code = "already_processed"


class FlowNotActionable(ApprovalError):
    status_code = 409
    code = "flow_not_actionable"


class StepNotActive(ApprovalError):
    """The step is pending but its order group is not the flow's current one."""

    status_code = 409
    code = "step_not_active"


class InvalidDecision(ApprovalError):
    status_code = 422
    code = "invalid_decision"


# ─── Lookup / submission ───

class StepNotFound(ApprovalError):
    status_code = 404
    code = "step_not_found"


class FlowNotFound(ApprovalError):
    status_code = 404
    code = "flow_not_found"


class TransactionNotFound(ApprovalError):
    status_code = 404
    code = "transaction_not_found"


class DuplicateSubmission(ApprovalError):
    status_code = 409
    code = "duplicate_submission"


class InvalidQuery(ApprovalError):
    status_code = 422
    code = "invalid_query"


# ─── Infrastructure ───

class ApprovalOperationFailed(ApprovalError):
    status_code = 503
    code = "operation_failed"
