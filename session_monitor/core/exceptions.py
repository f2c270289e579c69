"""
Error taxonomy for the session monitor
"""


class SessionMonitorError(Exception):
    """Base class for all session monitor errors"""


class MalformedPayload(SessionMonitorError):
    """Raised when a raw transport payload cannot be turned into an event"""


class TransportError(SessionMonitorError):
    """Raised or reported when the transport fails; triggers a reconnect"""


class ReconnectExhausted(SessionMonitorError):
    """Raised when the reconnect attempt budget has been used up"""

    def __init__(self, attempts: int):
        super().__init__(f"reconnect failed after {attempts} attempts")
        self.attempts = attempts


class PersistenceError(SessionMonitorError):
    """Raised when a snapshot cannot be loaded or saved"""
