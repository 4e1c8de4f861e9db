# moovspector/format_handlers/base.py
# !/usr/bin/env python3

from abc import ABC, abstractmethod
from typing import Any, List


class BaseMediaParser(ABC):
    """
    Abstract base class for media file format parsers.
    Defines the interface that all concrete media parsers must implement.
    """

    @abstractmethod
    def parse(self) -> Any:
        """
        Parses the binary stream the parser was created with and returns
        a summary of the presentation.

        May be called once; the stream is released when it returns,
        whether parsing succeeded or not.
        """
        pass

    @abstractmethod
    def tracks(self) -> List[Any]:
        """
        Returns the per-track records collected by ``parse()``, in file
        order. Only valid after a successful ``parse()``.
        """
        pass
