"""JavaScript, TypeScript and Java chunking using tree-sitter."""

from dataclasses import dataclass

import tree_sitter_java as ts_java
import tree_sitter_javascript as ts_js
import tree_sitter_typescript as ts_typescript
from tree_sitter import Language, Node, Parser

from quarry.chunking.base import ChunkingStrategy, bounded_lines, line_starts
from quarry.chunking.models import ChunkKind, ParseResult, Segment
from quarry.errors import ParseFailure


@dataclass(frozen=True)
class LanguageSpec:
    """Node types that drive chunking for one tree-sitter grammar."""

    declarations: dict[str, ChunkKind]
    containers: frozenset[str]
    methods: frozenset[str]
    comments: frozenset[str]
    wrappers: frozenset[str] = frozenset()
    variable_declarations: frozenset[str] = frozenset()


_FUNCTION_VALUES = frozenset({"arrow_function", "function", "function_expression"})

_JS_DECLARATIONS = {
    "function_declaration": ChunkKind.FUNCTION,
    "generator_function_declaration": ChunkKind.FUNCTION,
    "class_declaration": ChunkKind.CLASS,
}

_TS_DECLARATIONS = {
    **_JS_DECLARATIONS,
    "abstract_class_declaration": ChunkKind.CLASS,
    "interface_declaration": ChunkKind.CLASS,
    "type_alias_declaration": ChunkKind.CLASS,
    "enum_declaration": ChunkKind.CLASS,
    "module": ChunkKind.CLASS,
    "internal_module": ChunkKind.CLASS,
}

JAVASCRIPT_SPEC = LanguageSpec(
    declarations=_JS_DECLARATIONS,
    containers=frozenset({"class_declaration"}),
    methods=frozenset({"method_definition"}),
    comments=frozenset({"comment"}),
    wrappers=frozenset({"export_statement"}),
    variable_declarations=frozenset({"lexical_declaration", "variable_declaration"}),
)

TYPESCRIPT_SPEC = LanguageSpec(
    declarations=_TS_DECLARATIONS,
    containers=frozenset({"class_declaration", "abstract_class_declaration"}),
    methods=frozenset({"method_definition"}),
    comments=frozenset({"comment"}),
    wrappers=frozenset({"export_statement"}),
    variable_declarations=frozenset({"lexical_declaration", "variable_declaration"}),
)

JAVA_SPEC = LanguageSpec(
    declarations={
        "class_declaration": ChunkKind.CLASS,
        "interface_declaration": ChunkKind.CLASS,
        "enum_declaration": ChunkKind.CLASS,
        "record_declaration": ChunkKind.CLASS,
        "annotation_type_declaration": ChunkKind.CLASS,
    },
    containers=frozenset(
        {"class_declaration", "interface_declaration", "enum_declaration", "record_declaration"}
    ),
    methods=frozenset({"method_declaration", "constructor_declaration"}),
    comments=frozenset({"line_comment", "block_comment"}),
)


class TreeSitterChunkingStrategy(ChunkingStrategy):
    """Chunks brace-language source files using tree-sitter grammars."""

    def __init__(self, outline_chars: int = 800) -> None:
        """Initialize parsers for each supported grammar."""
        super().__init__(outline_chars)
        self._parsers: dict[str, Parser] = {
            "javascript": Parser(Language(ts_js.language())),
            "typescript": Parser(Language(ts_typescript.language_typescript())),
            "tsx": Parser(Language(ts_typescript.language_tsx())),
            "java": Parser(Language(ts_java.language())),
        }
        self._specs: dict[str, LanguageSpec] = {
            "javascript": JAVASCRIPT_SPEC,
            "typescript": TYPESCRIPT_SPEC,
            "tsx": TYPESCRIPT_SPEC,
            "java": JAVA_SPEC,
        }

    @property
    def languages(self) -> list[str]:
        """Language tags this strategy handles."""
        return list(self._parsers)

    @property
    def language_name(self) -> str:
        """Human-readable language name."""
        return "JavaScript/TypeScript/Java"

    def parse(self, content: str, language: str) -> ParseResult:
        """Find top-level declarations with tree-sitter.

        Top-level nodes containing syntax errors are reported as failed
        regions so the chunker can window just those lines.

        Args:
            content: Source text.
            language: One of ``javascript``, ``typescript``, ``tsx``, ``java``.

        Returns:
            ParseResult with segments and failed regions, or a failure.

        Raises:
            ParseFailure: If no grammar is loaded for the language.
        """
        if language not in self._parsers:
            raise ParseFailure(f"No tree-sitter grammar for {language!r}")

        try:
            parser = self._parsers[language]
            spec = self._specs[language]
            source = content.encode("utf-8")
            tree = parser.parse(source)
            walker = _Walker(content, source, spec, self.outline_chars)
            return walker.walk(tree.root_node)
        except Exception as e:
            return ParseResult.failure(f"Failed to parse {language}: {e}")


class _Walker:
    """Collects segments from the top level of one syntax tree."""

    def __init__(self, content: str, source: bytes, spec: LanguageSpec, outline_chars: int):
        self.content = content
        self.source = source
        self.spec = spec
        self.outline_chars = outline_chars
        self.starts = line_starts(content)

    def walk(self, root: Node) -> ParseResult:
        segments: list[Segment] = []
        failed: list[tuple[int, int]] = []

        comment_row: int | None = None  # First row of the pending comment block
        comment_end_row = -1
        comment_text: list[str] = []
        prev_end_row = -1

        for child in root.children:
            if child.type in self.spec.comments:
                if comment_row is None or child.start_point[0] > comment_end_row + 1:
                    comment_row = child.start_point[0]
                    comment_text = []
                comment_end_row = child.end_point[0]
                comment_text.append(self._text(child))
                continue

            first_row = child.start_point[0]
            if (
                comment_row is not None
                and comment_end_row >= first_row - 1
                and comment_row > prev_end_row
            ):
                first_row = comment_row
            leading_doc = "\n".join(comment_text) if first_row != child.start_point[0] else ""
            comment_row = None
            comment_text = []

            if child.type == "ERROR" or child.has_error:
                failed.append((self._row_start(first_row), self._row_end(child)))
                prev_end_row = child.end_point[0]
                continue

            declaration = self._unwrap(child)
            kind = self._classify(declaration)
            if kind is None:
                prev_end_row = child.end_point[0]
                continue

            name = self._name(declaration)
            if declaration.type in self.spec.containers:
                segments.extend(
                    self._container_segments(child, declaration, first_row, name, leading_doc)
                )
            else:
                segments.append(
                    Segment(
                        start=self._row_start(first_row),
                        end=self._row_end(child),
                        kind=kind,
                        breadcrumb=name,
                    )
                )
            prev_end_row = child.end_point[0]

        return ParseResult.success(segments, failed)

    def _container_segments(
        self,
        outer: Node,
        declaration: Node,
        first_row: int,
        name: str | None,
        leading_doc: str,
    ) -> list[Segment]:
        """Split a class-like declaration into a header and its methods."""
        whole = Segment(
            start=self._row_start(first_row),
            end=self._row_end(outer),
            kind=ChunkKind.CLASS,
            breadcrumb=name,
        )
        body = declaration.child_by_field_name("body")
        if body is None:
            return [whole]

        methods: list[tuple[int, Node]] = []
        prev_row = body.start_point[0]
        comment_row: int | None = None
        comment_end_row = -1
        for member in body.children:
            if member.type in self.spec.comments:
                if comment_row is None or member.start_point[0] > comment_end_row + 1:
                    comment_row = member.start_point[0]
                comment_end_row = member.end_point[0]
                continue
            if member.type in self.spec.methods:
                row = member.start_point[0]
                if (
                    comment_row is not None
                    and comment_end_row >= row - 1
                    and comment_row > prev_row
                ):
                    row = comment_row
                methods.append((max(row, prev_row + 1), member))
            comment_row = None
            if member.is_named:
                prev_row = member.end_point[0]

        if not methods or methods[0][0] <= first_row:
            return [whole]

        signature = self._signature(declaration)
        context = f"{signature}\n{leading_doc}".strip()
        outline = bounded_lines([self._signature(m) for _, m in methods], self.outline_chars)

        segments = [
            Segment(
                start=self._row_start(first_row),
                end=self._row_start(methods[0][0]),
                kind=ChunkKind.CLASS,
                breadcrumb=name,
                outline=outline,
            )
        ]
        for row, method in methods:
            method_name = self._name(method)
            segments.append(
                Segment(
                    start=self._row_start(row),
                    end=self._row_end(method),
                    kind=ChunkKind.METHOD,
                    breadcrumb=f"{name}.{method_name}" if name and method_name else method_name,
                    context=context,
                )
            )
        return segments

    def _unwrap(self, node: Node) -> Node:
        """Return the declaration inside wrappers such as ``export``."""
        if node.type in self.spec.wrappers:
            declaration = node.child_by_field_name("declaration")
            if declaration is not None:
                return declaration
            for child in node.named_children:
                if (
                    child.type in self.spec.declarations
                    or child.type in self.spec.variable_declarations
                ):
                    return child
        return node

    def _classify(self, node: Node) -> ChunkKind | None:
        if node.type in self.spec.declarations:
            return self.spec.declarations[node.type]
        if node.type in self.spec.variable_declarations:
            # const handler = () => {...} counts as a function
            for declarator in node.named_children:
                value = declarator.child_by_field_name("value")
                if value is not None and value.type in _FUNCTION_VALUES:
                    return ChunkKind.FUNCTION
        return None

    def _name(self, node: Node) -> str | None:
        name_node = node.child_by_field_name("name")
        if name_node is None and node.type in self.spec.variable_declarations:
            for declarator in node.named_children:
                name_node = declarator.child_by_field_name("name")
                if name_node is not None:
                    break
        return self._text(name_node) if name_node is not None else None

    def _signature(self, node: Node) -> str:
        """Declaration text before its body, collapsed onto one line."""
        body = node.child_by_field_name("body")
        end = body.start_byte if body is not None else node.end_byte
        header = self.source[node.start_byte : end].decode("utf-8", errors="replace")
        return " ".join(header.split())

    def _text(self, node: Node) -> str:
        return self.source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")

    def _row_start(self, row: int) -> int:
        """Offset of the start of a 0-based row."""
        return self.starts[min(row, len(self.starts) - 1)]

    def _row_end(self, node: Node) -> int:
        """Offset just past the last line a node touches."""
        row, column = node.end_point[0], node.end_point[1]
        if column == 0 and row > node.start_point[0]:
            # Node ends exactly at a line break
            return self.starts[min(row, len(self.starts) - 1)]
        if row + 1 < len(self.starts):
            return self.starts[row + 1]
        return len(self.content)
