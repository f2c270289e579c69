# Models package
from .device import Device
from .session import DeviceSession
from .event_log import EventLog

__all__ = ['Device', 'DeviceSession', 'EventLog']
