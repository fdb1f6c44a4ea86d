class ErrorCodes:
    """String codes attached to every EngineException so callers can branch without
    parsing messages."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_BET = "INVALID_BET"
    UNKNOWN_VOLATILITY = "UNKNOWN_VOLATILITY"
    SLOT_CONFIG_ERROR = "SLOT_CONFIG_ERROR"
    GAME_LOGIC_ERROR = "GAME_LOGIC_ERROR"
    CASCADE_LIMIT_EXCEEDED = "CASCADE_LIMIT_EXCEEDED"
