"""Source file tracking: include search paths, positions and their text forms."""

from __future__ import annotations

import dataclasses
import sys
from dataclasses import dataclass, field
from typing import IO, BinaryIO, TextIO

from devtree.util import FatalError, join_path

MAX_SRCFILE_DEPTH = 100


def _dirname(path: str) -> str | None:
    """Everything before the last slash, or None when there is no slash."""
    head, sep, _ = path.rpartition("/")
    return head if sep else None


@dataclass
class SourceFile:
    """One open source file and the reading position within it."""

    name: str | None
    dir: str | None = None
    lineno: int = 1
    colno: int = 1
    prev: SourceFile | None = field(default=None, repr=False)
    stream: IO[bytes] | None = field(default=None, repr=False, compare=False)
    is_stdin: bool = field(default=False, repr=False, compare=False)


@dataclass
class SourcePosition:
    """A span of source text, optionally chained to further spans."""

    first_line: int = 0
    first_column: int = 0
    last_line: int = 0
    last_column: int = 0
    file: SourceFile | None = None
    next: SourcePosition | None = None

    def copy(self) -> SourcePosition:
        """Copy this position together with a snapshot of its file state."""
        if self.next is not None:
            raise ValueError("only an unchained position can be copied")
        file_copy = dataclasses.replace(self.file) if self.file else None
        return dataclasses.replace(self, file=file_copy, next=None)

    def extend(self, tail: SourcePosition | None) -> SourcePosition:
        """Append tail to the end of this chain and return the chain's head."""
        last = self
        while last.next is not None:
            last = last.next
        last.next = tail
        return self

    def describe(self) -> str:
        """Short form: file:line.col, with the end added when it differs."""
        fname = self.file.name if self.file and self.file.name else "<no-file>"
        if self.first_line != self.last_line:
            return (
                f"{fname}:{self.first_line}.{self.first_column}"
                f"-{self.last_line}.{self.last_column}"
            )
        if self.first_column != self.last_column:
            return (
                f"{fname}:{self.first_line}.{self.first_column}"
                f"-{self.last_column}"
            )
        return f"{fname}:{self.first_line}.{self.first_column}"


class SourceTracker:
    """Keeps the stack of open source files and the include search path."""

    def __init__(self, depfile: TextIO | None = None) -> None:
        self.depfile = depfile
        self.current: SourceFile | None = None
        self.search_paths: list[str] = []
        self._depth = 0
        self._initial_path: str | None = None
        self._initial_pathlen = 0
        self._initial_cpp = True

    def _set_initial_path(self, fname: str) -> None:
        self._initial_path = fname
        self._initial_pathlen = fname.count("/")

    def add_search_path(self, dirname: str) -> None:
        """Add a directory to the end of the include search path."""
        self.search_paths.append(dirname)

    @staticmethod
    def _try_open(dirname: str | None, fname: str) -> tuple[BinaryIO, str]:
        if dirname is None or fname.startswith("/"):
            fullname = fname
        else:
            fullname = join_path(dirname, fname)
        return open(fullname, "rb"), fullname

    def _open_on_path(self, fname: str) -> tuple[BinaryIO, str]:
        cur_dir = self.current.dir if self.current else None
        last_error: OSError | None = None
        for dirname in [cur_dir, *self.search_paths]:
            try:
                return self._try_open(dirname, fname)
            except OSError as exc:
                last_error = exc
        reason = last_error.strerror if last_error else "not found"
        raise FatalError(f'Couldn\'t open "{fname}": {reason}')

    def relative_open(self, fname: str) -> tuple[IO[bytes], str]:
        """Open a source file, searching the current directory then the path.

        "-" means standard input. Returns the stream and its full name.
        """
        if fname == "-":
            stream: IO[bytes] = sys.stdin.buffer
            fullname = "<stdin>"
        else:
            stream, fullname = self._open_on_path(fname)
        if self.depfile is not None:
            self.depfile.write(f" {fullname}")
        return stream, fullname

    def push(self, fname: str) -> SourceFile:
        """Open a file and make it the current source file."""
        depth = self._depth
        self._depth += 1
        if depth >= MAX_SRCFILE_DEPTH:
            raise FatalError("Includes nested too deeply")

        stream, fullname = self.relative_open(fname)
        srcfile = SourceFile(
            name=fullname,
            dir=_dirname(fullname),
            prev=self.current,
            stream=stream,
            is_stdin=fname == "-",
        )
        self.current = srcfile

        if self._depth == 1:
            self._set_initial_path(fullname)
        return srcfile

    def pop(self) -> bool:
        """Close the current file; True if an enclosing file remains."""
        srcfile = self.current
        if srcfile is None:
            raise RuntimeError("no source file is open")
        self.current = srcfile.prev
        if srcfile.stream is not None and not srcfile.is_stdin:
            try:
                srcfile.stream.close()
            except OSError as exc:
                raise FatalError(
                    f'Error closing "{srcfile.name}": {exc.strerror}'
                ) from exc
        return self.current is not None

    def update(self, pos: SourcePosition, text: str) -> None:
        """Record the span of text in pos and advance the reading position."""
        srcfile = self.current
        if srcfile is None:
            raise RuntimeError("no source file is open")
        pos.file = srcfile
        pos.first_line = srcfile.lineno
        pos.first_column = srcfile.colno
        for ch in text:
            if ch == "\n":
                srcfile.lineno += 1
                srcfile.colno = 1
            else:
                srcfile.colno += 1
        pos.last_line = srcfile.lineno
        pos.last_column = srcfile.colno

    def set_line(self, name: str, line: int) -> None:
        """Apply a line marker: the current file takes this name and line."""
        if self.current is None:
            raise RuntimeError("no source file is open")
        self.current.name = name
        self.current.lineno = line
        if self._initial_cpp:
            self._initial_cpp = False
            self._set_initial_path(name)

    def shorten_to_initial_path(self, fname: str) -> str | None:
        """Express fname relative to the directory of the first file read.

        Returns None when the two paths share no leading directory.
        """
        prevslash: int | None = None
        slashes = 0
        for index, (a, b) in enumerate(zip(fname, self._initial_path or "")):
            if a != b:
                break
            if a == "/":
                prevslash = index
                slashes += 1
        if prevslash is None:
            return None
        diff = self._initial_pathlen - slashes
        return "../" * diff + fname[prevslash + 1:]

    def _string_comment(
        self, pos: SourcePosition | None, first_line: bool, level: int
    ) -> str | None:
        if pos is None:
            return "<no-file>:<no-line>" if level > 1 else None

        if pos.file is None:
            fname = "<no-file>"
        elif not pos.file.name:
            fname = "<no-filename>"
        elif level > 1:
            fname = pos.file.name
        else:
            fname = self.shorten_to_initial_path(pos.file.name) or pos.file.name

        if level > 1:
            first = (
                f"{fname}:{pos.first_line}:{pos.first_column}"
                f"-{pos.last_line}:{pos.last_column}"
            )
        else:
            line = pos.first_line if first_line else pos.last_line
            first = f"{fname}:{line}"

        if pos.next is not None:
            rest = self._string_comment(pos.next, first_line, level)
            return f"{first}, {rest}"
        return first

    def string_first(self, pos: SourcePosition | None, level: int) -> str | None:
        """Annotation text naming where each span in the chain starts."""
        return self._string_comment(pos, True, level)

    def string_last(self, pos: SourcePosition | None, level: int) -> str | None:
        """Annotation text naming where each span in the chain ends."""
        return self._string_comment(pos, False, level)


def format_error(pos: SourcePosition, prefix: str, message: str) -> str:
    """An error line of the form "prefix: position message"."""
    return f"{prefix}: {pos.describe()} {message}"