from tumble_engine.error_codes import ErrorCodes


class EngineException(Exception):
    def __init__(self, error_code, status_message, status_code, details=None):
        super().__init__(status_message)
        self.error_code = error_code
        self.status_message = status_message
        self.status_code = status_code
        self.details = details if details is not None else {}

    def to_dict(self):
        return {
            "error_code": self.error_code,
            "status_message": self.status_message,
            "status_code": self.status_code,
            "details": self.details,
        }


class ValidationException(EngineException):
    def __init__(self, status_message="Validation failed", details=None, error_code=ErrorCodes.VALIDATION_ERROR):
        super().__init__(
            error_code=error_code,
            status_message=status_message,
            status_code=422,
            details=details
        )


class ConfigurationException(EngineException):
    """Game configuration is unusable. Raised at load time, never mid-spin."""
    def __init__(self, status_message="Invalid game configuration", details=None):
        super().__init__(
            error_code=ErrorCodes.SLOT_CONFIG_ERROR,
            status_message=status_message,
            status_code=500,
            details=details
        )


class GameLogicException(EngineException):
    def __init__(self, status_message="Game logic error", details=None, status_code=500,
                 error_code=ErrorCodes.GAME_LOGIC_ERROR):
        super().__init__(
            error_code=error_code,
            status_message=status_message,
            status_code=status_code,
            details=details
        )


class CascadeLimitExceededException(GameLogicException):
    """The grid kept producing wins after the configured number of tumbles."""
    def __init__(self, max_cascades, details=None):
        super().__init__(
            status_message=f"Cascade loop did not settle within {max_cascades} cascades",
            details=details,
            status_code=500,
            error_code=ErrorCodes.CASCADE_LIMIT_EXCEEDED
        )
        self.max_cascades = max_cascades
