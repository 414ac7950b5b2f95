"""Python chunking using the built-in ast module."""

import ast
from dataclasses import replace

from quarry.chunking.base import ChunkingStrategy, bounded_lines, line_starts
from quarry.chunking.models import ChunkKind, ParseResult, Segment

_FUNCTION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)


class PythonChunkingStrategy(ChunkingStrategy):
    """Chunks Python source into functions, classes and methods."""

    @property
    def languages(self) -> list[str]:
        """Language tags this strategy handles."""
        return ["python"]

    @property
    def language_name(self) -> str:
        """Human-readable language name."""
        return "Python"

    def parse(self, content: str, language: str) -> ParseResult:
        """Find top-level functions and classes.

        Each declaration is extended upward over its decorators and any
        contiguous ``#`` comment block. Methods become children of their class;
        the class segment keeps the header, docstring and class attributes
        that precede the first method, plus an outline of method signatures.

        Args:
            content: Python source.
            language: Always ``"python"``.

        Returns:
            ParseResult with segments, or a failure on syntax errors.
        """
        # ast rejects a leading byte order mark; parse past it and shift back
        bom = 1 if content.startswith("\ufeff") else 0
        content = content[bom:]
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError) as e:
            # ValueError covers source containing null bytes
            return ParseResult.failure(f"Syntax error: {e}")

        starts = line_starts(content, universal_newlines=True)
        lines = [
            content[start : starts[i + 1] if i + 1 < len(starts) else len(content)]
            for i, start in enumerate(starts)
        ]
        source = _Source(content, starts, lines)

        segments: list[Segment] = []
        floor = 0  # Lines before this index belong to earlier statements

        for node in tree.body:
            if isinstance(node, _FUNCTION_NODES):
                first = source.first_line(node, floor)
                segments.append(
                    Segment(
                        start=source.offset(first),
                        end=source.end_offset(node.end_lineno or node.lineno),
                        kind=ChunkKind.FUNCTION,
                        breadcrumb=node.name,
                    )
                )
            elif isinstance(node, ast.ClassDef):
                segments.extend(self._class_segments(node, source, floor))
            floor = node.end_lineno or node.lineno

        if bom:
            # The mark stays with whatever chunk starts the file
            segments = [
                replace(s, start=s.start + bom if s.start else 0, end=s.end + bom)
                for s in segments
            ]
        return ParseResult.success(segments)

    def _class_segments(self, node: ast.ClassDef, source: "_Source", floor: int) -> list[Segment]:
        """Split a class into a header segment and one segment per method."""
        class_first = source.first_line(node, floor)
        class_end = node.end_lineno or node.lineno

        methods: list[tuple[int, ast.FunctionDef | ast.AsyncFunctionDef]] = []
        prev_end = source.header_end(node)
        for item in node.body:
            if isinstance(item, _FUNCTION_NODES):
                methods.append((source.first_line(item, prev_end), item))
            prev_end = item.end_lineno or item.lineno

        whole = Segment(
            start=source.offset(class_first),
            end=source.end_offset(class_end),
            kind=ChunkKind.CLASS,
            breadcrumb=node.name,
        )
        if not methods or methods[0][0] <= class_first:
            return [whole]

        signature = source.signature(node)
        docstring = ast.get_docstring(node) or ""
        method_context = f"{signature}\n{docstring}".strip()
        outline = bounded_lines([source.signature(m) for _, m in methods], self.outline_chars)

        segments = [
            Segment(
                start=source.offset(class_first),
                end=source.offset(methods[0][0]),
                kind=ChunkKind.CLASS,
                breadcrumb=node.name,
                outline=outline,
            )
        ]
        for first, method in methods:
            segments.append(
                Segment(
                    start=source.offset(first),
                    end=source.end_offset(method.end_lineno or method.lineno),
                    kind=ChunkKind.METHOD,
                    breadcrumb=f"{node.name}.{method.name}",
                    context=method_context,
                )
            )
        return segments


class _Source:
    """Line bookkeeping for one parsed Python file."""

    def __init__(self, content: str, starts: list[int], lines: list[str]) -> None:
        self.content = content
        self.starts = starts
        self.lines = lines

    def offset(self, line: int) -> int:
        """Offset of the start of a 1-based line."""
        return self.starts[line - 1]

    def end_offset(self, line: int) -> int:
        """Offset just past the end of a 1-based line, newline included."""
        if line < len(self.starts):
            return self.starts[line]
        return len(self.content)

    def first_line(self, node: ast.stmt, floor: int) -> int:
        """First line of a declaration including decorators and leading comments.

        Args:
            node: Function or class node.
            floor: Number of lines owned by earlier statements.

        Returns:
            1-based line number.
        """
        first = node.lineno
        for decorator in getattr(node, "decorator_list", []):
            first = min(first, decorator.lineno)

        index = first - 2  # 0-based index of the line above
        while index >= floor and self.lines[index].strip().startswith("#"):
            index -= 1
        return index + 2

    def header_end(self, node: ast.ClassDef) -> int:
        """Last line of a class header, before its body starts."""
        if node.body and node.body[0].lineno > node.lineno:
            return node.body[0].lineno - 1
        return node.lineno

    def signature(self, node: ast.stmt) -> str:
        """Declaration header collapsed onto one line."""
        start = node.lineno - 1
        body = getattr(node, "body", None)
        stop = body[0].lineno - 1 if body else (node.end_lineno or node.lineno)
        stop = max(stop, start + 1)
        return " ".join("".join(self.lines[start:stop]).split())
