"""Readers for compressed binary instruction traces."""

from __future__ import annotations

import copy
import gzip
import io
import lzma
from typing import Any, BinaryIO, Callable, ClassVar, Iterator, Optional
from urllib.request import Request, urlopen

from uarchsim.instruction import CloudsuiteInstr, InputInstr, OooModelInstr


class TraceNotFoundError(FileNotFoundError):
    """The trace file or URL does not exist or cannot be opened."""


class TraceReader:
    """Reads trace records, restarting from the beginning at the end of the trace.

    Each returned instruction carries as its branch target the address of the
    instruction that follows it.
    """

    record_type: ClassVar[type[InputInstr] | type[CloudsuiteInstr]]

    def __init__(self, cpu: int, trace_string: str) -> None:
        if type(self) is TraceReader:
            raise TypeError("use InputTraceReader or CloudsuiteTraceReader")
        self.cpu = cpu
        self.trace_string = trace_string
        self._raw: Optional[Any] = None
        self._stream: Optional[BinaryIO] = None
        self._last: Optional[OooModelInstr] = None

        dot = trace_string.rfind(".")
        if dot < 0:
            raise ValueError(f"trace name has no extension: {trace_string}")

        self._remote = trace_string[:4] == "http"
        if self._remote:
            self._check_remote()
        else:
            try:
                with io.open(trace_string, "rb"):
                    pass
            except OSError as exc:
                raise TraceNotFoundError(f"trace file not found: {trace_string}") from exc

        kind = trace_string[dot + 1 : dot + 2]
        if kind == "g":
            self._decompress: Callable[[Any], BinaryIO] = lambda raw: gzip.GzipFile(fileobj=raw, mode="rb")
        elif kind == "x":
            self._decompress = lambda raw: lzma.LZMAFile(raw)
        else:
            raise ValueError("only gz and xz compressed traces are supported")

        self.open()

    def _check_remote(self) -> None:
        try:
            with urlopen(Request(self.trace_string, method="HEAD")):
                pass
        except OSError as exc:
            raise TraceNotFoundError(f"trace file not found: {self.trace_string}") from exc

    def open(self) -> None:
        """Open (or reopen) the trace from its beginning."""
        self.close()
        try:
            raw = urlopen(self.trace_string) if self._remote else io.open(self.trace_string, "rb")
        except OSError as exc:
            raise TraceNotFoundError(f"cannot open trace file: {self.trace_string}") from exc
        self._raw = raw
        self._stream = self._decompress(raw)

    def close(self) -> None:
        """Release the underlying file or connection."""
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._raw is not None:
            self._raw.close()
            self._raw = None

    def _read_record(self) -> InputInstr | CloudsuiteInstr:
        size = self.record_type.SIZE
        reopened = False
        while True:
            if self._stream is None:
                self.open()
            data = self._stream.read(size)
            if len(data) == size:
                return self.record_type.unpack(data)
            if reopened:
                raise EOFError(f"trace holds no complete record: {self.trace_string}")
            print(f"*** Reached end of trace: {self.trace_string}")
            self.open()
            reopened = True

    def get(self) -> OooModelInstr:
        """Return the next instruction."""
        current = OooModelInstr.from_trace(self.cpu, self._read_record())
        if self._last is None:
            self._last = current
        self._last.branch_target = current.ip
        result = copy.deepcopy(self._last)
        self._last = current
        return result

    def __iter__(self) -> Iterator[OooModelInstr]:
        while True:
            yield self.get()

    def __enter__(self) -> "TraceReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class InputTraceReader(TraceReader):
    """Reader for the standard trace format."""

    record_type = InputInstr


class CloudsuiteTraceReader(TraceReader):
    """Reader for the cloudsuite trace format."""

    record_type = CloudsuiteInstr


def get_tracereader(fname: str, cpu: int, is_cloudsuite: bool) -> TraceReader:
    """Open a trace of the requested format."""
    if is_cloudsuite:
        return CloudsuiteTraceReader(cpu, fname)
    return InputTraceReader(cpu, fname)