# winbuildcheck/config/__init__.py
from .config_loader import PreflightSettings, load_config_file, validate_build_config

__all__ = ["PreflightSettings", "load_config_file", "validate_build_config"]
