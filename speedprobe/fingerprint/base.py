"""Abstract base class for fingerprint stages."""

from __future__ import annotations

import abc
from typing import Optional

from speedprobe.models import PartialDeviceInfo


class FingerprintStage(abc.ABC):
    """One identification strategy in the fingerprint cascade.

    A stage looks at a single reachable address and reports whatever it
    learned.  It must absorb its own network failures and return ``None``
    when it learned nothing.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short identifier (e.g. 'rdns')."""

    @abc.abstractmethod
    async def identify(self, address: str) -> Optional[PartialDeviceInfo]:
        """Return what this stage can tell about *address*, or None."""
