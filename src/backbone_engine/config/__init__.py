from backbone_engine.config.settings import DEFAULT_CONFIG, SystemSettings, load_settings
from backbone_engine.config.validation import assert_valid_settings, validate_settings

__all__ = ["DEFAULT_CONFIG", "SystemSettings", "assert_valid_settings", "load_settings", "validate_settings"]
