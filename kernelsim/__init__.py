"""Teaching operating-system kernel: process scheduling, resources and I/O over TCP."""

__version__ = "0.1.0"