"""
Pure domain layer of the kernel.

No ORM, database or I/O dependencies (SystemClock excepted).
"""

from kunde_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
