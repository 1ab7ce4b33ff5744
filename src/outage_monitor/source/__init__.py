from .base import BaseSource
from .rosseti import RossetiSource

__all__ = ["BaseSource", "RossetiSource"]
