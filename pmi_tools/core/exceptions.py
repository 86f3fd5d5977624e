"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

    AuthenticationError              401  no resolvable identity
    ForbiddenError                   403  identity lacks standing on the resource
    NotFoundError                    404
    ConflictError                    409  duplicate or concurrent modification
    InvalidTransitionError           409  edge not in the state machine
    ValidationError                  422  well-formed input violating a rule
    TransitionGateError (+ subtypes) 422  progression gate not satisfied
    UnexpectedError                  500  storage / infrastructure failure

Usage:
    from pmi_tools.core.exceptions import NotFoundError, BlockedError

    raise NotFoundError(resource="Assignment", resource_id=42)
    raise BlockedError(blocking_task_id=7, blocking_task_title="Campus Tour")
"""


class AuthenticationError(Exception):
    """Raised when the request carries no identity the platform recognises.

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when a known identity may not act on the requested resource.

    Maps to HTTP 403.

    Args:
        message: Human-readable reason, safe to return to the client.
        actor: Email of the rejected principal. Logged, not returned.
    """

    def __init__(self, message: str = "Forbidden", actor: str | None = None) -> None:
        self.actor = actor
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Assignment", "TaskProgress").
        resource_id: The key that was looked up. Included in logs and the message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) - this
    exception signals that the data was well-formed but violated a business
    rule (e.g. unknown task type, dependency across templates, cycle).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with existing or concurrently changed state.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field that collides.
        value: The conflicting value.
        message: Optional override for the default message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | int | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not an edge of the entity's state machine.

    Maps to HTTP 409.
    """

    def __init__(self, entity: str, old_status: str, new_status: str) -> None:
        self.entity = entity
        self.old_status = old_status
        self.new_status = new_status
        super().__init__(
            f"Invalid {entity} transition: {old_status} → {new_status}",
            details={"from": old_status, "to": new_status},
        )


class UnexpectedError(Exception):
    """Raised when storage or infrastructure fails mid-operation.

    The message is generic on purpose; the original exception is chained
    and logged by the service that raised this.

    Maps to HTTP 500.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(message)


# ── Progression gate failures ───────────────────────────────────────────────


class TransitionGateError(Exception):
    """Base for rejections of a task transition by one of its gates.

    Each subclass names exactly what is missing so a client can direct the
    user to the right remedy. Maps to HTTP 422.
    """

    code = "gate_failed"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def payload(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        body.update(self.payload())
        return body


class BlockedError(TransitionGateError):
    """A hard dependency of the task is neither completed nor waived."""

    code = "blocked"

    def __init__(self, blocking_task_id: int, blocking_task_title: str, gate_type: str = "hard") -> None:
        self.blocking_task_id = blocking_task_id
        self.blocking_task_title = blocking_task_title
        self.gate_type = gate_type
        super().__init__(f'Blocked: complete "{blocking_task_title}" first')

    def payload(self) -> dict:
        return {
            "blocked_by": self.blocking_task_id,
            "blocked_by_title": self.blocking_task_title,
            "gate_type": self.gate_type,
        }


class EvidenceRequiredError(TransitionGateError):
    """The task requires at least one evidence upload before completion."""

    code = "evidence_required"

    def __init__(self) -> None:
        super().__init__("This task requires evidence upload before completion")

    def payload(self) -> dict:
        return {"requires_evidence": True}


class SignOffRequiredError(TransitionGateError):
    """The actor is not authorised to sign this task off."""

    code = "sign_off_required"

    def __init__(self, sign_off_role: str) -> None:
        self.sign_off_role = sign_off_role
        label = sign_off_role.replace("_", " ")
        super().__init__(f"This task requires sign-off by a {label}")

    def payload(self) -> dict:
        return {"requires_sign_off": True, "sign_off_role": self.sign_off_role}


class DirectorEndorsementRequiredError(TransitionGateError):
    """The actor holds no active director endorsement."""

    code = "director_endorsement_required"

    def __init__(self) -> None:
        super().__init__("This task requires a Program Director endorsement to complete")

    def payload(self) -> dict:
        return {"requires_director": True}
