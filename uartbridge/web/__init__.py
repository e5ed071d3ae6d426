"""HTTP control surface."""

from .control import ControlServer, HttpResponse

__all__ = ["ControlServer", "HttpResponse"]
