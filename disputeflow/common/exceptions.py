from fastapi import HTTPException, status


class DisputeFlowException(HTTPException):
    def __init__(self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(status_code=status_code, detail=detail)


class NotFoundError(DisputeFlowException):
    def __init__(self, resource: str, resource_id: str | None = None):
        self.resource = resource
        detail = f"{resource} not found"
        if resource_id:
            detail = f"{resource} '{resource_id}' not found"
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND)


class PermissionDeniedError(DisputeFlowException):
    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class ValidationError(DisputeFlowException):
    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class ConflictError(DisputeFlowException):
    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


class ConcurrentModificationError(ConflictError):
    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} '{resource_id}' was modified concurrently, retry the operation")


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str, reason: str | None = None):
        self.current = current
        self.target = target
        msg = f"Invalid dispute transition: {current} -> {target}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ExternalServiceError(DisputeFlowException):
    def __init__(self, service: str, detail: str | None = None, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        msg = f"External service error: {service}"
        if detail:
            msg += f" - {detail}"
        super().__init__(detail=msg, status_code=status.HTTP_502_BAD_GATEWAY)


class CriterionEvaluationError(DisputeFlowException):
    def __init__(self, criterion: str, cause: BaseException | None = None):
        self.criterion = criterion
        self.cause = cause
        msg = f"Criterion '{criterion}' evaluation failed"
        if cause is not None:
            msg += f": {cause!r}"
        super().__init__(detail=msg)


class AssessmentPipelineError(DisputeFlowException):
    def __init__(self, dispute_id: str, detail: str):
        self.dispute_id = dispute_id
        super().__init__(detail=f"Assessment of dispute {dispute_id} failed: {detail}")


class ResolutionEffectError(DisputeFlowException):
    def __init__(self, dispute_id: str, effect: str, cause: BaseException | None = None):
        self.dispute_id = dispute_id
        self.effect = effect
        self.cause = cause
        msg = f"Resolution effect '{effect}' failed for dispute {dispute_id}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(detail=msg, status_code=status.HTTP_502_BAD_GATEWAY)
