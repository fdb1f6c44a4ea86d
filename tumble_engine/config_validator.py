"""
Environment validation for the engine settings.

Values are checked once, when `config.Config` is first imported. A bad value aborts
startup instead of producing a simulator that quietly runs with the wrong game.
"""

import logging
import os
import sys
import warnings
from typing import List, Optional

TRUE_VALUES = ('true', '1', 't', 'yes')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigValidationError(Exception):
    """Raised when an engine setting is missing or invalid."""
    pass


class ConfigValidator:
    """Validates TUMBLE_* environment settings."""

    def __init__(self, environ=None):
        """
        Args:
            environ: Mapping to read settings from. Defaults to os.environ.
        """
        self.environ = os.environ if environ is None else environ
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def _get(self, var_name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.environ.get(var_name)
        if value is None or not str(value).strip():
            return default
        return str(value).strip()

    def _get_bool(self, var_name: str, default: Optional[bool] = False) -> Optional[bool]:
        value = self._get(var_name)
        if value is None:
            return default
        return value.lower() in TRUE_VALUES

    def _get_int(self, var_name: str, default: Optional[int], minimum: int = None) -> Optional[int]:
        value = self._get(var_name)
        if value is None:
            return default
        try:
            parsed = int(value)
        except ValueError:
            self.errors.append(f"{var_name} must be an integer, got '{value}'")
            return default
        if minimum is not None and parsed < minimum:
            self.errors.append(f"{var_name} must be >= {minimum}, got {parsed}")
            return default
        return parsed

    def validate_game_source(self):
        short_name = self._get('TUMBLE_GAME', 'high_kitchen')
        config_path = self._get('TUMBLE_GAME_CONFIG_PATH')
        if config_path is not None and not os.path.isfile(config_path):
            self.errors.append(f"TUMBLE_GAME_CONFIG_PATH points to a missing file: {config_path}")
        if config_path is not None and self._get('TUMBLE_GAME') is not None:
            self.warnings.append("Both TUMBLE_GAME and TUMBLE_GAME_CONFIG_PATH are set; the explicit path wins")
        return short_name, config_path

    def validate_rng_config(self):
        seed = self._get_int('TUMBLE_RNG_SEED', None, minimum=0)
        secure = self._get_bool('TUMBLE_SECURE_RNG', False)
        if secure and seed is not None:
            self.errors.append("TUMBLE_RNG_SEED cannot be combined with TUMBLE_SECURE_RNG")
        return seed, secure

    def validate_volatility(self) -> Optional[str]:
        value = self._get('TUMBLE_DEFAULT_VOLATILITY')
        if value is None:
            return None
        value = value.upper()
        if not value.isidentifier():
            self.errors.append(f"TUMBLE_DEFAULT_VOLATILITY is not a valid profile name: '{value}'")
            return None
        return value

    def validate_logging_config(self):
        level = self._get('TUMBLE_LOG_LEVEL', 'INFO').upper()
        if level not in LOG_LEVELS:
            self.warnings.append(f"Unknown TUMBLE_LOG_LEVEL '{level}', falling back to INFO")
            level = 'INFO'
        return getattr(logging, level), self._get_bool('TUMBLE_LOG_JSON', False)

    def validate_all(self) -> dict:
        """
        Validate every setting.

        Returns:
            Dictionary of validated values keyed by Config attribute name.

        Raises:
            ConfigValidationError: If any setting is invalid.
        """
        config = {}
        config['GAME_SHORT_NAME'], config['GAME_CONFIG_PATH'] = self.validate_game_source()
        config['RNG_SEED'], config['SECURE_RNG'] = self.validate_rng_config()
        config['DEFAULT_VOLATILITY'] = self.validate_volatility()
        config['MAX_REDRAWS'] = self._get_int('TUMBLE_MAX_REDRAWS', None, minimum=1)
        config['PROGRESS_INTERVAL'] = self._get_int('TUMBLE_PROGRESS_INTERVAL', 1000, minimum=1)
        config['SCATTER_CONTROL'] = self._get_bool('TUMBLE_SCATTER_CONTROL', None)
        config['LOG_LEVEL'], config['LOG_JSON'] = self.validate_logging_config()

        if self.errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in self.errors)
            if self.warnings:
                error_msg += "\n\nWarnings:\n" + "\n".join(f"  - {warning}" for warning in self.warnings)
            raise ConfigValidationError(error_msg)

        for warning in self.warnings:
            warnings.warn(warning, UserWarning)

        return config


def validate_engine_config(environ=None) -> dict:
    """
    Validate engine configuration with fail-fast behavior.

    Raises:
        SystemExit: If validation fails.
    """
    try:
        return ConfigValidator(environ).validate_all()
    except ConfigValidationError as e:
        print("\nCONFIGURATION VALIDATION FAILED\n", file=sys.stderr)
        print(str(e), file=sys.stderr)
        print("\nCheck the TUMBLE_* environment variables (or your .env file).\n", file=sys.stderr)
        sys.exit(1)
