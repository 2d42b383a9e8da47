class EngineError(Exception):
    """Base class for every business-rule violation raised by the engine."""

    code = "engine_error"
    http_status = 400

    def __init__(self, message: str = None, **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        out.update(self.details)
        return out


class ValidationError(EngineError):
    code = "validation_error"
    http_status = 400


class InvalidAmount(ValidationError):
    code = "invalid_amount"
    http_status = 400


class NotFound(EngineError):
    code = "not_found"
    http_status = 404


class SlotConflict(EngineError):
    code = "slot_conflict"
    http_status = 409


class InvalidState(EngineError):
    code = "invalid_state"
    http_status = 409


class AlreadyFined(EngineError):
    code = "already_fined"
    http_status = 409


class CodeRejected(EngineError):
    code = "code_rejected"
    http_status = 422

    def __init__(self, reason: str, message: str = None):
        super().__init__(message or f"Code rejected: {reason}", reason=reason)
        self.reason = reason


class AlreadyUsed(CodeRejected):
    code = "already_used"
    http_status = 409

    def __init__(self, message: str = None):
        super().__init__("already_used", message or "This code has already been used")


class CodeGenerationExhausted(EngineError):
    code = "code_generation_exhausted"
    http_status = 503


class ConcurrentModification(EngineError):
    code = "concurrent_modification"
    http_status = 503
