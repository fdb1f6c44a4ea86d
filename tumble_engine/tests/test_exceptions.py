import pytest

from tumble_engine.error_codes import ErrorCodes
from tumble_engine.exceptions import (
    CascadeLimitExceededException,
    ConfigurationException,
    EngineException,
    GameLogicException,
    ValidationException,
)


def test_engine_exception_instantiation():
    exc = EngineException(error_code="TEST_001", status_message="Test message", status_code=400,
                          details={"field": "value"})
    assert exc.error_code == "TEST_001"
    assert exc.status_message == "Test message"
    assert exc.status_code == 400
    assert exc.details == {"field": "value"}
    assert str(exc) == "Test message"


def test_engine_exception_defaults():
    exc = EngineException(error_code="TEST_002", status_message="Default test", status_code=500)
    assert exc.details == {}


def test_to_dict():
    exc = ValidationException("Bad bet", details={"bet": -1}, error_code=ErrorCodes.INVALID_BET)
    assert exc.to_dict() == {
        "error_code": ErrorCodes.INVALID_BET,
        "status_message": "Bad bet",
        "status_code": 422,
        "details": {"bet": -1},
    }


def test_validation_exception():
    exc = ValidationException(status_message="Input is invalid", details={"field": "Invalid format"})
    assert exc.error_code == ErrorCodes.VALIDATION_ERROR
    assert exc.status_code == 422
    with pytest.raises(ValidationException):
        raise exc


def test_configuration_exception():
    exc = ConfigurationException()
    assert exc.error_code == ErrorCodes.SLOT_CONFIG_ERROR
    assert exc.status_code == 500
    assert exc.status_message == "Invalid game configuration"


def test_game_logic_exception():
    exc = GameLogicException(status_message="Weighted draw over an empty distribution")
    assert exc.error_code == ErrorCodes.GAME_LOGIC_ERROR
    assert exc.status_code == 500
    with pytest.raises(EngineException):
        raise exc


def test_cascade_limit_exception():
    exc = CascadeLimitExceededException(50, details={"mode": "base"})
    assert isinstance(exc, GameLogicException)
    assert exc.error_code == ErrorCodes.CASCADE_LIMIT_EXCEEDED
    assert exc.max_cascades == 50
    assert "50 cascades" in exc.status_message
    assert exc.details == {"mode": "base"}
