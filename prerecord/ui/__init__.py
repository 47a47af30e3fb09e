"""prerecord - UI Package"""

from .web_ui import WebUI

__all__ = ['WebUI']
