import ast
from collections import defaultdict

from typing import Iterable, Iterator, Set, DefaultDict, Type, TypeVar

VarsByUsageType = DefaultDict[Type[ast.expr_context], Set[str]]

# Statements that open a new scope; names and statements inside them belong to a different function.
SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)


class _FindVariablesByUsageVisitor(ast.NodeVisitor):
    """Traverses the AST, finds variables, and group their names by usage.

    Don't instantiate this class directly.  Instead, use the `find_variables_by_usage` function defined below.
    """
    def __init__(self) -> None:
        # The keys are subtypes of `ast.expr_context` -- `Load`, `Store`, etc.
        self.vars_by_usage: VarsByUsageType = defaultdict(set)
        super(_FindVariablesByUsageVisitor, self).__init__()

    def visit_Name(self, name: ast.Name) -> None:
        self.vars_by_usage[type(name.ctx)].add(name.id)

    def _visit_inner_scope(self, node: ast.AST, bound: Set[str]) -> None:
        """Comprehensions and lambdas have their own scope; only their free variables are used from the outside."""
        inner = _FindVariablesByUsageVisitor()
        for child in ast.iter_child_nodes(node):
            inner.visit(child)
        self.vars_by_usage[ast.Load] |= inner.vars_by_usage[ast.Load] - inner.vars_by_usage[ast.Store] - bound

    def visit_ListComp(self, comp: ast.expr) -> None:
        self._visit_inner_scope(comp, set())

    visit_SetComp = visit_DictComp = visit_GeneratorExp = visit_ListComp

    def visit_Lambda(self, lam: ast.Lambda) -> None:
        for default in lam.args.defaults + [d for d in lam.args.kw_defaults if d is not None]:
            self.visit(default)
        args = lam.args
        params = {arg.arg for arg in args.posonlyargs + args.args + args.kwonlyargs}
        params |= {arg.arg for arg in (args.vararg, args.kwarg) if arg is not None}
        inner = _FindVariablesByUsageVisitor()
        inner.visit(lam.body)
        self.vars_by_usage[ast.Load] |= inner.vars_by_usage[ast.Load] - params

    def visit_MatchAs(self, match_as: ast.MatchAs) -> None:
        # Capture patterns bind names without a `Name` node.
        if match_as.name is not None:
            self.vars_by_usage[ast.Store].add(match_as.name)
        self.generic_visit(match_as)

    def visit_MatchStar(self, match_star: ast.MatchStar) -> None:
        if match_star.name is not None:
            self.vars_by_usage[ast.Store].add(match_star.name)

    def visit_MatchMapping(self, match_mapping: ast.MatchMapping) -> None:
        if match_mapping.rest is not None:
            self.vars_by_usage[ast.Store].add(match_mapping.rest)
        self.generic_visit(match_mapping)


def find_variables_by_usage(node: ast.AST) -> VarsByUsageType:
    """Returns a list of variable names grouped by usage context."""
    visitor = _FindVariablesByUsageVisitor()
    visitor.visit(node)
    return visitor.vars_by_usage


def walk_scope(node: ast.AST) -> Iterator[ast.AST]:
    """Like `ast.walk`, but doesn't descend into nested function, class, or lambda definitions.

    Nested definitions themselves are yielded, as they bind a name in the current scope.
    """
    todo = [node]
    while todo:
        curr = todo.pop()
        yield curr
        if curr is not node and isinstance(curr, SCOPE_NODES):
            continue
        todo.extend(ast.iter_child_nodes(curr))


def walk_stmts(stmts: Iterable[ast.stmt]) -> Iterator[ast.AST]:
    """Walks a statement list in the current scope; see `walk_scope`."""
    for stmt in stmts:
        if isinstance(stmt, SCOPE_NODES):
            yield stmt
        else:
            yield from walk_scope(stmt)


def load(symbol_id: str) -> ast.Name:
    """Returns an AST Name node that loads a variable."""
    return ast.Name(id=symbol_id, ctx=ast.Load())


def assign(symbol_id: str, value: ast.expr) -> ast.Assign:
    """Returns an AST Assign node that assign a value to a variable."""
    return ast.Assign(targets=[ast.Name(id=symbol_id, ctx=ast.Store())], value=value)


def method_call(symbol_id: str, method: str, *args: ast.expr) -> ast.Call:
    """Returns an AST Call node that invokes a method on a variable, e.g., `marker.finish()`."""
    return ast.Call(func=ast.Attribute(value=load(symbol_id), attr=method, ctx=ast.Load()), args=list(args),
                    keywords=[])


AST_T = TypeVar("AST_T", bound=ast.AST)


def clone_node(node: AST_T, **updated_args) -> AST_T:
    """Returns a shallow copy of an AST node with the specified attributes updated."""
    args = dict(ast.iter_fields(node))
    args.update(updated_args)
    ast_class = type(node)
    cloned = ast_class(**args)
    return ast.copy_location(cloned, node)
