"""
Engine configuration, read from the environment (and an optional .env file) with
fail-fast validation. Pass a Config class or instance explicitly to the orchestrator
and simulator; nothing here is consulted implicitly at spin time.
"""
from types import SimpleNamespace

from dotenv import load_dotenv

from tumble_engine.config_validator import validate_engine_config

load_dotenv()


class Config:
    _validated_config = validate_engine_config()

    # Game selection
    GAME_SHORT_NAME = _validated_config['GAME_SHORT_NAME']
    GAME_CONFIG_PATH = _validated_config['GAME_CONFIG_PATH']
    DEFAULT_VOLATILITY = _validated_config['DEFAULT_VOLATILITY']  # None -> game's default profile

    # Randomness
    RNG_SEED = _validated_config['RNG_SEED']
    SECURE_RNG = _validated_config['SECURE_RNG']

    # Grid construction; None keeps the game's own redraw budget
    MAX_REDRAWS = _validated_config['MAX_REDRAWS']
    SCATTER_CONTROL = _validated_config['SCATTER_CONTROL']  # None -> the game's own setting

    # Simulation
    PROGRESS_INTERVAL = _validated_config['PROGRESS_INTERVAL']

    # Logging
    LOG_LEVEL = _validated_config['LOG_LEVEL']
    LOG_JSON = _validated_config['LOG_JSON']


class TestingConfig(Config):
    TESTING = True
    GAME_SHORT_NAME = 'high_kitchen'
    GAME_CONFIG_PATH = None
    DEFAULT_VOLATILITY = None
    RNG_SEED = 1234
    SECURE_RNG = False
    MAX_REDRAWS = None
    SCATTER_CONTROL = None
    PROGRESS_INTERVAL = 100


def settings_from(config=Config, **overrides):
    """
    Snapshot a Config class as a plain namespace, applying any non-None overrides.

    The result pickles by value, so it can be handed to simulation worker processes.
    """
    values = {name: getattr(config, name) for name in dir(config) if name.isupper()}
    values.update({name.upper(): value for name, value in overrides.items() if value is not None})
    return SimpleNamespace(**values)
