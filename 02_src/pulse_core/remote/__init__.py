"""Remote viewer module."""

from .viewer import IRemoteViewer, RemoteViewer

__all__ = ["IRemoteViewer", "RemoteViewer"]
