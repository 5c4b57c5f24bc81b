"""
Compiles resumable blocks into step-dispatched code.

A resumable block is the body of a `with cort.reenter(marker):` statement.  Every `cort.suspend(...)` and
`cort.fork(...)` statement in it is a resume point, numbered 1, 2, ... in textual order.  The block is replaced by a
loop that dispatches on the marker's step to either the body itself (step 0) or the continuation code of a resume
point, i.e., everything that runs after that point::

    _co_marker_0 = cort.reenter(marker)
    _co_exit_0 = False
    while not _co_marker_0.is_finished():
        _co_step_0 = _co_marker_0.resume_step(2)
        if _co_step_0 == 0:
            ...                      # the body, with resume points replaced by marker updates and `break`s
        elif _co_step_0 == 1:
            ...                      # continuation code of resume point 1
        elif _co_step_0 == 2:
            ...                      # continuation code of resume point 2
        _co_marker_0.finish()        # fell off the end of the body

Leaving the block at a suspend point is a `break`.  Inside a user loop, the `break` sets `_co_exit_0` first, and every
loop containing a resume point is followed by `if _co_exit_0: break` so that the exit propagates outwards.
"""
import ast
import copy
from enum import Enum, auto
import logging
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple, Union

from .liveness import LivenessTracker
from .node_visitor import StmtVisitor, NodeNotSupportedError
from .runtime_names import RuntimeNames, REENTER, SUSPEND, FORK, IS_CHILD, IS_PARENT, TERMINATE, CONTINUE, RESUMABLE
from .util import (SCOPE_NODES, assign, find_variables_by_usage, load, method_call, clone_node, walk_scope,
                   walk_stmts)

logger = logging.getLogger(__name__)

LoopT = Union[ast.For, ast.While]
FunctionT = Union[ast.FunctionDef, ast.AsyncFunctionDef]

# Statements a resume point cannot be nested in: resuming would have to re-enter them half-way.
_UNRESUMABLE_STMTS: Tuple[type, ...] = (ast.Try, ast.With, ast.AsyncWith, ast.AsyncFor)
if hasattr(ast, "TryStar"):
    _UNRESUMABLE_STMTS += (ast.TryStar,)


class PointKind(Enum):
    SUSPEND = auto()
    TERMINATE = auto()
    FORK = auto()

    def __str__(self):
        return self.name.lower()


class ResumePoint(NamedTuple):
    """A suspend or fork statement inside a resumable block."""
    step: int
    kind: PointKind
    expr: Optional[ast.expr]  # Evaluated before leaving the block (suspend) or as the child (fork).
    node: ast.Expr


class BlockInfo(NamedTuple):
    """Describes a compiled block; used for diagnostics."""
    func_name: str
    index: int
    lineno: int
    points: List[ResumePoint]


class LoopBodyDelimiter(NamedTuple):
    """Inserted into a subsequent statement list denoting that everything before it is in a loop's body."""
    loop: LoopT


SubsequentStatementsT = List[Union[ast.stmt, LoopBodyDelimiter]]


class BlockNames(NamedTuple):
    """Names of the hidden local variables used by the compiled code of one block."""
    marker: str
    step: str
    exit: str
    once: str

    @staticmethod
    def for_block(index: int) -> "BlockNames":
        return BlockNames(marker=f"_co_marker_{index}", step=f"_co_step_{index}", exit=f"_co_exit_{index}",
                          once=f"_co_once_{index}")


def _child_stmt_lists(stmt: ast.stmt) -> List[List[ast.stmt]]:
    """Returns the statement lists directly nested in a compound statement."""
    if isinstance(stmt, (ast.If, ast.While, ast.For, ast.AsyncFor)):
        return [stmt.body, stmt.orelse]
    if isinstance(stmt, ast.Match):
        return [case.body for case in stmt.cases]
    if isinstance(stmt, _UNRESUMABLE_STMTS):
        if isinstance(stmt, (ast.With, ast.AsyncWith)):
            return [stmt.body]
        return [stmt.body] + [handler.body for handler in stmt.handlers] + [stmt.orelse, stmt.finalbody]
    return []


def _exit_check(names: BlockNames) -> ast.If:
    """Generates `if _co_exit_N: break`, placed after loops that may be left through a resume point."""
    return ast.If(test=load(names.exit), body=[ast.Break()], orelse=[])


class _MarkerQueryRewriter(ast.NodeTransformer):
    """Rewrites argument-less `cort.is_child()` and `cort.is_parent()` calls into queries on the block's marker."""

    def __init__(self, names: RuntimeNames, marker_id: str) -> None:
        super(_MarkerQueryRewriter, self).__init__()
        self._names = names
        self._marker_id = marker_id

    def visit_Call(self, call: ast.Call) -> ast.expr:
        self.generic_visit(call)
        api = self._names.resolve_call(call)
        if api in (IS_CHILD, IS_PARENT) and not call.args and not call.keywords:
            return ast.copy_location(method_call(self._marker_id, api), call)
        return call

    def _visit_scope(self, node: ast.AST) -> ast.AST:
        # A nested scope has no access to this block's marker.
        return node

    visit_FunctionDef = visit_AsyncFunctionDef = visit_ClassDef = _visit_scope


class _StepEmitter(StmtVisitor):
    """
    Emits the compiled form of statements in a resumable block.

    Each `visit` method takes an extra `in_loop` argument, which is True if the statement is inside a loop (a user
    loop or a loop generated for a continuation) within the block, and returns a list of statements.
    """

    def __init__(self, points: Dict[ast.stmt, ResumePoint], names: BlockNames) -> None:
        super(_StepEmitter, self).__init__()
        self._points = points
        self._names = names

    def contains_point(self, node: ast.AST) -> bool:
        return any(n in self._points for n in walk_scope(node))

    def emit_list(self, stmts: Iterable[ast.stmt], in_loop: bool) -> List[ast.stmt]:
        result: List[ast.stmt] = []
        for stmt in stmts:
            result.extend(self.visit(stmt, in_loop))
        return result

    def emit_continuation(self, subsequent: SubsequentStatementsT) -> List[ast.stmt]:
        """
        Emits the code that runs after a resume point, given the statements subsequent to the point.

        Resuming in a loop body finishes the interrupted iteration and then re-enters the loop::

            for _co_once_N in range(1):  # "Dummy" loop, runs only once
                .  -+
                .   |- rest of the interrupted iteration
                .  -+
            else:
                while ...:  -+
                   .         |- the entire loop
                   .        -+

        The interrupted iteration can end in one of three ways:

          - By reaching the end of the loop body: the dummy loop terminates, the "else" branch is run, and the
            actual loop restarts;
          - Through a "continue" statement: the rest of the dummy loop body is skipped, the "else" branch is run, and
            the actual loop restarts;
          - Through a "break" statement (including one leaving the block): both the rest of the dummy loop body and the
            "else" branch are skipped, so the actual loop isn't restarted.
        """
        delimiters_left = sum(isinstance(item, LoopBodyDelimiter) for item in subsequent)
        cont_body: List[ast.stmt] = []
        for item in subsequent:
            if isinstance(item, LoopBodyDelimiter):
                delimiters_left -= 1
                dummy_loop = ast.For(
                    target=ast.Name(id=self._names.once, ctx=ast.Store()),
                    iter=ast.Call(func=load("range"), args=[ast.Constant(value=1)], keywords=[]),
                    body=cont_body or [ast.Pass()],  # Loop body is not allowed to be empty.
                    orelse=self.visit(item.loop, delimiters_left > 0),
                    type_comment=None,
                )
                cont_body = [ast.copy_location(dummy_loop, item.loop), _exit_check(self._names)]
            else:
                cont_body.extend(self.visit(item, delimiters_left > 0))
        return cont_body

    def _emit_point(self, point: ResumePoint) -> List[ast.stmt]:
        marker = self._names.marker
        step = ast.Constant(value=point.step)
        stmts: List[ast.stmt] = []
        if point.kind is PointKind.FORK:
            # The expression runs as the child, then execution falls through as the parent.
            stmts.append(ast.Expr(method_call(marker, "set_child", step)))
            if point.expr is not None:
                stmts.append(ast.Expr(copy.deepcopy(point.expr)))
            stmts.append(ast.Expr(method_call(marker, "set_parent", ast.Constant(value=point.step))))
        else:
            if point.kind is PointKind.TERMINATE:
                stmts.append(ast.Expr(method_call(marker, "finish")))
            else:
                stmts.append(ast.Expr(method_call(marker, "set_parent", step)))
                if point.expr is not None:
                    stmts.append(ast.Expr(copy.deepcopy(point.expr)))
            stmts.append(assign(self._names.exit, ast.Constant(value=True)))
            stmts.append(ast.Break())
        return [ast.copy_location(stmt, point.node) for stmt in stmts]

    def generic_visit(self, stmt: ast.AST, *args, **kwargs) -> List[ast.stmt]:
        # Straight-line statements and nested definitions are copied as they are.
        return [copy.deepcopy(stmt)]

    def visit_Expr(self, expr: ast.Expr, in_loop: bool) -> List[ast.stmt]:
        point = self._points.get(expr)
        if point is None:
            return [copy.deepcopy(expr)]
        return self._emit_point(point)

    def _visit_loop_exit(self, stmt: Union[ast.Break, ast.Continue], in_loop: bool) -> List[ast.stmt]:
        if in_loop:
            return [copy.deepcopy(stmt)]
        # Outside of any loop, `break` and `continue` leave the block and finish the computation.
        finish = ast.Expr(method_call(self._names.marker, "finish"))
        return [ast.copy_location(finish, stmt), ast.copy_location(ast.Break(), stmt)]

    visit_Break = visit_Continue = _visit_loop_exit

    def visit_If(self, if_stmt: ast.If, in_loop: bool) -> List[ast.stmt]:
        return [clone_node(if_stmt, test=copy.deepcopy(if_stmt.test), body=self.emit_list(if_stmt.body, in_loop),
                           orelse=self.emit_list(if_stmt.orelse, in_loop))]

    def _visit_loop(self, loop: Union[LoopT, ast.AsyncFor], in_loop: bool) -> List[ast.stmt]:
        fields = {name: copy.deepcopy(getattr(loop, name)) for name in ("test", "target", "iter") if hasattr(loop, name)}
        transformed = clone_node(loop, body=self.emit_list(loop.body, True), orelse=self.emit_list(loop.orelse, in_loop),
                                 **fields)
        if self.contains_point(loop):
            return [transformed, _exit_check(self._names)]
        return [transformed]

    visit_While = visit_For = visit_AsyncFor = _visit_loop

    def visit_Match(self, match_stmt: ast.Match, in_loop: bool) -> List[ast.stmt]:
        cases = [clone_node(case, pattern=copy.deepcopy(case.pattern), guard=copy.deepcopy(case.guard),
                            body=self.emit_list(case.body, in_loop))
                 for case in match_stmt.cases]
        return [clone_node(match_stmt, subject=copy.deepcopy(match_stmt.subject), cases=cases)]

    def _visit_with(self, with_stmt: Union[ast.With, ast.AsyncWith], in_loop: bool) -> List[ast.stmt]:
        return [clone_node(with_stmt, items=copy.deepcopy(with_stmt.items),
                           body=self.emit_list(with_stmt.body, in_loop))]

    visit_With = visit_AsyncWith = _visit_with

    def visit_Try(self, try_stmt: ast.Try, in_loop: bool) -> List[ast.stmt]:
        handlers = [clone_node(handler, type=copy.deepcopy(handler.type), body=self.emit_list(handler.body, in_loop))
                    for handler in try_stmt.handlers]
        return [clone_node(try_stmt, body=self.emit_list(try_stmt.body, in_loop), handlers=handlers,
                           orelse=self.emit_list(try_stmt.orelse, in_loop),
                           finalbody=self.emit_list(try_stmt.finalbody, in_loop))]

    visit_TryStar = visit_Try


class BlockCompiler(object):
    """Compiles a single `with cort.reenter(...)` statement.  See the module docstring for the generated code."""

    def __init__(self, names: RuntimeNames, func: FunctionT, with_stmt: ast.With, index: int) -> None:
        self._names = names
        self._func = func
        self._with_stmt = with_stmt
        self._block_names = BlockNames.for_block(index)
        self._index = index
        self.points: Dict[ast.stmt, ResumePoint] = {}

    def _as_point(self, stmt: ast.stmt) -> Optional[Tuple[PointKind, Optional[ast.expr]]]:
        """If `stmt` is a suspend or fork statement, returns its kind and expression."""
        if not isinstance(stmt, ast.Expr):
            return None
        call = stmt.value
        api = self._names.resolve_call(call)
        if api not in (SUSPEND, FORK):
            return None
        assert isinstance(call, ast.Call)

        if call.keywords or len(call.args) > 1 or any(isinstance(arg, ast.Starred) for arg in call.args):
            raise NodeNotSupportedError(call, f"{api}() takes at most one positional argument")
        arg = call.args[0] if call.args else None
        if api == FORK:
            return PointKind.FORK, arg

        arg_api = self._names.resolve(arg) if arg is not None else None
        if arg_api == TERMINATE:
            return PointKind.TERMINATE, None
        if arg_api == CONTINUE:
            return PointKind.SUSPEND, None
        return PointKind.SUSPEND, arg

    def _collect_points(self, stmts: List[ast.stmt], unresumable: Optional[ast.stmt]) -> None:
        """Numbers resume points in textual order; rejects points that cannot be resumed."""
        for stmt in stmts:
            point = self._as_point(stmt)
            if point is not None:
                if unresumable is not None:
                    raise NodeNotSupportedError(
                        stmt, f"Resume point inside {type(unresumable).__name__} statement not supported")
                kind, expr = point
                assert isinstance(stmt, ast.Expr)
                self.points[stmt] = ResumePoint(step=len(self.points) + 1, kind=kind, expr=expr, node=stmt)
                continue

            if isinstance(stmt, SCOPE_NODES):
                continue  # Resume points in nested functions belong to their own blocks.
            if isinstance(stmt, (ast.With, ast.AsyncWith)) and reenter_call(stmt, self._names) is not None:
                raise NodeNotSupportedError(stmt, "Nested reenter block not supported")

            enclosing = stmt if isinstance(stmt, _UNRESUMABLE_STMTS) else unresumable
            for child_stmts in _child_stmt_lists(stmt):
                self._collect_points(child_stmts, enclosing)

    def _check_misplaced_calls(self, body: List[ast.stmt]) -> None:
        """Rejects suspend/fork calls that aren't statements of their own, e.g., `x = cort.suspend()`."""
        point_calls = {point.node.value for point in self.points.values()}
        for node in walk_stmts(body):
            if self._names.resolve_call(node) in (SUSPEND, FORK) and node not in point_calls:
                raise NodeNotSupportedError(node, "suspend() and fork() must be used as statements")

    def _collect_subsequent(self, stmts: List[ast.stmt], tail: SubsequentStatementsT,
                            conts: Dict[int, SubsequentStatementsT]) -> None:
        """Records, for each resume point, the statements executed after it."""
        for i, stmt in enumerate(stmts):
            rest: SubsequentStatementsT = list(stmts[i + 1:]) + tail
            point = self.points.get(stmt)
            if point is not None:
                conts[point.step] = rest
            elif isinstance(stmt, ast.If):
                self._collect_subsequent(stmt.body, rest, conts)
                self._collect_subsequent(stmt.orelse, rest, conts)
            elif isinstance(stmt, (ast.While, ast.For)):
                self._collect_subsequent(stmt.body, [LoopBodyDelimiter(stmt)] + rest, conts)
                self._collect_subsequent(stmt.orelse, rest, conts)
            elif isinstance(stmt, ast.Match):
                for case in stmt.cases:
                    self._collect_subsequent(case.body, rest, conts)

    def _warn_lost_locals(self, body: List[ast.stmt], conts: Dict[int, SubsequentStatementsT]) -> None:
        """Logs a warning for each local variable whose value may be needed after a resume point."""
        block_stores: Set[str] = set()
        for node in walk_stmts(body):
            if isinstance(node, ast.stmt):
                block_stores |= _direct_stores(node)

        # Names bound outside the block are re-bound on every invocation before the block runs.
        in_block = {id(node) for node in walk_scope(self._with_stmt)}
        outside_stores: Set[str] = set()
        declared: Set[str] = set()
        for node in walk_scope(self._func):
            if node is self._func:
                continue
            if isinstance(node, (ast.Global, ast.Nonlocal)):
                declared.update(node.names)
            elif isinstance(node, ast.stmt) and id(node) not in in_block:
                outside_stores |= _direct_stores(node)
        args = self._func.args
        params = {arg.arg for arg in args.posonlyargs + args.args + args.kwonlyargs}
        params |= {arg.arg for arg in (args.vararg, args.kwarg) if arg is not None}

        candidates = block_stores - outside_stores - declared - params
        if not candidates:
            return

        for step, subsequent in sorted(conts.items()):
            tracker = LivenessTracker()
            for item in reversed(subsequent):
                tracker.prepend_stmt(item.loop if isinstance(item, LoopBodyDelimiter) else item)
            point = next(p for p in self.points.values() if p.step == step)
            for name in sorted(tracker.live_vars & candidates):
                logger.warning("%s (line %d): local variable '%s' may be read after resume point %d, but local "
                               "variables are not preserved across invocations", self._func.name, point.node.lineno,
                               name, step)

    def _warn_restarting_loops(self, body: List[ast.stmt]) -> None:
        """
        Logs a warning for each `for` loop with a resume point whose iterable is evaluated anew on resume, e.g.,
        `for i in range(3):`.  A name or attribute may refer to a persistent iterator, so those aren't reported.
        """
        for node in walk_stmts(body):
            if not isinstance(node, ast.For) or isinstance(node.iter, (ast.Name, ast.Attribute)):
                continue
            if any(n in self.points for n in walk_scope(node)):
                logger.warning("%s (line %d): for loop contains a resume point; its iteration restarts on every "
                               "resume unless the iterable is a persistent iterator", self._func.name, node.lineno)

    def compile(self) -> Tuple[List[ast.stmt], BlockInfo]:
        """Returns the statements replacing the `with` statement."""
        call = reenter_call(self._with_stmt, self._names)
        assert call is not None
        names = self._block_names

        body = [_MarkerQueryRewriter(self._names, names.marker).visit(stmt)
                for stmt in copy.deepcopy(self._with_stmt.body)]
        self._collect_points(body, None)
        self._check_misplaced_calls(body)

        conts: Dict[int, SubsequentStatementsT] = {}
        self._collect_subsequent(body, [], conts)
        assert len(conts) == len(self.points)
        self._warn_lost_locals(body, conts)
        self._warn_restarting_loops(body)

        emitter = _StepEmitter(self.points, names)
        branches: List[Tuple[int, List[ast.stmt]]] = [(0, emitter.emit_list(body, False))]
        for step in range(1, len(self.points) + 1):
            branches.append((step, emitter.emit_continuation(conts[step])))

        # A single flat dispatch on the resume step.
        dispatch: Optional[ast.If] = None
        for step, stmts in reversed(branches):
            test = ast.Compare(left=load(names.step), ops=[ast.Eq()], comparators=[ast.Constant(value=step)])
            dispatch = ast.If(test=test, body=stmts or [ast.Pass()], orelse=[dispatch] if dispatch else [])
        assert dispatch is not None

        loop = ast.While(
            test=ast.UnaryOp(op=ast.Not(), operand=method_call(names.marker, "is_finished")),
            body=[
                assign(names.step, method_call(names.marker, "resume_step", ast.Constant(value=len(self.points)))),
                dispatch,
                ast.Expr(method_call(names.marker, "finish")),
            ],
            orelse=[],
        )
        result = [
            assign(names.marker, copy.deepcopy(call)),
            assign(names.exit, ast.Constant(value=False)),
            loop,
        ]
        for stmt in result:
            ast.copy_location(stmt, self._with_stmt)

        points = sorted(self.points.values(), key=lambda p: p.step)
        info = BlockInfo(func_name=self._func.name, index=self._index, lineno=self._with_stmt.lineno, points=points)
        logger.debug("compiled reenter block %d of %s with %d resume point(s)", self._index, self._func.name,
                     len(points))
        return result, info


def _direct_stores(stmt: ast.stmt) -> Set[str]:
    """Returns the names a statement binds, not counting statements nested in it."""
    if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return {stmt.name}
    if isinstance(stmt, (ast.Import, ast.ImportFrom)):
        return {alias.asname or alias.name.partition(".")[0] for alias in stmt.names}

    stores: Set[str] = set()
    if isinstance(stmt, ast.Match):
        for case in stmt.cases:
            stores |= find_variables_by_usage(case.pattern)[ast.Store]
        return stores

    for node in ast.iter_child_nodes(stmt):
        if isinstance(node, (ast.stmt, ast.excepthandler)):
            continue
        stores |= find_variables_by_usage(node)[ast.Store]
    if isinstance(stmt, _UNRESUMABLE_STMTS) and hasattr(stmt, "handlers"):
        stores |= {handler.name for handler in stmt.handlers if handler.name}
    return stores


def reenter_call(with_stmt: Union[ast.With, ast.AsyncWith], names: RuntimeNames) -> Optional[ast.Call]:
    """If a `with` statement is a resumable block, returns its `cort.reenter(...)` call; otherwise returns None."""
    calls = [item.context_expr for item in with_stmt.items if names.resolve_call(item.context_expr) == REENTER]
    if not calls:
        return None

    if isinstance(with_stmt, ast.AsyncWith):
        raise NodeNotSupportedError(with_stmt, "reenter block in an async with statement not supported")
    if len(with_stmt.items) > 1:
        raise NodeNotSupportedError(with_stmt, "reenter block must be the only context manager of a with statement")
    if with_stmt.items[0].optional_vars is not None:
        raise NodeNotSupportedError(with_stmt, "reenter block doesn't support `as`")
    call = calls[0]
    assert isinstance(call, ast.Call)
    if len(call.args) != 1 or call.keywords:
        raise NodeNotSupportedError(call, "reenter() takes exactly one argument")
    return call


class _FunctionScope(object):
    def __init__(self, func: FunctionT) -> None:
        self.func = func
        self.block_count = 0


class StepTransformer(ast.NodeTransformer):
    """Compiles every resumable block in an AST.  Mutates the AST.

    See the `transform` and `transform_function` functions in this package for usage.
    """

    def __init__(self, names: RuntimeNames) -> None:
        super(StepTransformer, self).__init__()
        self._names = names
        self._scopes: List[_FunctionScope] = []
        self.blocks: List[BlockInfo] = []

    def _visit_function(self, func_def: FunctionT) -> FunctionT:
        self._scopes.append(_FunctionScope(func_def))
        try:
            self.generic_visit(func_def)
        finally:
            self._scopes.pop()

        # A compiled function must not be compiled again when it's imported.
        func_def.decorator_list = [d for d in func_def.decorator_list if self._names.resolve(d) != RESUMABLE]
        return func_def

    visit_FunctionDef = visit_AsyncFunctionDef = _visit_function

    def visit_With(self, with_stmt: ast.With) -> Union[ast.AST, List[ast.stmt]]:
        call = reenter_call(with_stmt, self._names)
        if call is None:
            return self.generic_visit(with_stmt)
        if not self._scopes:
            raise NodeNotSupportedError(with_stmt, "reenter block outside of a function not supported")
        scope = self._scopes[-1]

        # Reject directly nested blocks before compiling the nested definitions.
        for node in walk_stmts(with_stmt.body):
            if isinstance(node, (ast.With, ast.AsyncWith)) and reenter_call(node, self._names) is not None:
                raise NodeNotSupportedError(node, "Nested reenter block not supported")
        self.generic_visit(with_stmt)

        compiler = BlockCompiler(self._names, scope.func, with_stmt, scope.block_count)
        scope.block_count += 1
        stmts, info = compiler.compile()
        self.blocks.append(info)
        return stmts

    def visit_AsyncWith(self, with_stmt: ast.AsyncWith) -> ast.AST:
        reenter_call(with_stmt, self._names)  # Raises if this is a resumable block.
        return self.generic_visit(with_stmt)
