"""prerecord - Utils Package"""

from .config_manager import (
    RecorderConfig, ConfigProvider, JsonFileConfigProvider, ConfigProviderError,
)
from .timeutil import resolve_pytz, filename_timestamp

__all__ = [
    'RecorderConfig', 'ConfigProvider', 'JsonFileConfigProvider', 'ConfigProviderError',
    'resolve_pytz', 'filename_timestamp',
]
