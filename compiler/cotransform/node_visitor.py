import ast

from typing import Optional


class NodeNotSupportedError(Exception):
    """Raised when a resumable block uses a construct the compiler cannot handle; carries the offending node."""

    DEFAULT_MESSAGE = "Unsupported AST node"

    def __init__(self, node: ast.AST, message: Optional[str] = None) -> None:
        self.node = node
        self.lineno: Optional[int] = getattr(node, "lineno", None)
        location = f"line {self.lineno}: " if self.lineno is not None else ""
        super(NodeNotSupportedError, self).__init__(
            f"{location}{message or self.DEFAULT_MESSAGE}: {type(node).__name__} {ast.dump(node)}")


class StmtVisitor(object):
    """
    Dispatches on statement type like `ast.NodeVisitor`, with two differences:
      - `visit()` forwards extra arguments to the handler, which returns a value of its choosing; and
      - there is no implicit recursion: a node type without a `visit_<type>` method goes to `generic_visit`, which
        raises `NodeNotSupportedError` unless overridden.
    """
    def visit(self, node: ast.AST, *args, **kwargs):
        handler = getattr(self, f"visit_{type(node).__name__}", self.generic_visit)
        return handler(node, *args, **kwargs)

    def generic_visit(self, node: ast.AST, *args, **kwargs):
        raise NodeNotSupportedError(node)
