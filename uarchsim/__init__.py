"""Queues, virtual memory, a page table walker, trace readers, the PRINCE cipher and a CVP-1 trace converter for microarchitecture simulation."""

__version__ = "0.1.0"