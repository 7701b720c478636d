from .heartbeat import app

__all__ = ["app"]
