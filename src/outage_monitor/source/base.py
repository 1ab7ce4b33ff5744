from abc import ABC, abstractmethod
from typing import List

from ..models import OutageRecord


class BaseSource(ABC):
    """Abstract base class for outage sources"""

    @abstractmethod
    def fetch(self) -> List[OutageRecord]:
        """Fetch outage records from the source

        Raises SourceError when the source cannot be read.
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """Return the name of this source for logging"""
        pass
