"""Authentication session handling."""

from dessharvest.auth.session import AuthSession, DeviceRef, SessionMode

__all__ = ["AuthSession", "DeviceRef", "SessionMode"]
