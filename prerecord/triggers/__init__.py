"""prerecord - Trigger sources"""

from .input_monitor import InputTrigger, file_input_reader
from .hot_folder import HotFolderTrigger, read_trigger_file, write_trigger_file

__all__ = [
    'InputTrigger', 'file_input_reader',
    'HotFolderTrigger', 'read_trigger_file', 'write_trigger_file',
]
