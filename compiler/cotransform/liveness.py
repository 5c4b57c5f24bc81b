import ast

from typing import List, Union, Set

from .node_visitor import StmtVisitor
from .util import find_variables_by_usage


class LivenessTracker(StmtVisitor):
    """
    Keeps track of live variables in the code that runs after a suspend point.

    The compiler walks the continuation code backwards; a `LivenessTracker` instance remembers which variables are live
    at the current program point.  When a new statement is _prepended_ to the list of considered statements (remember
    we're walking the program backwards), the set of live variables is updated.

    Initially, no variable is live.
    """

    def __init__(self) -> None:
        super(LivenessTracker, self).__init__()
        self._live_vars: Set[str] = set()

    @property
    def live_vars(self) -> Set[str]:
        """Returns the names of currently live variables, as as set."""
        return self._live_vars.copy()  # Return a copy so that this instance's copy isn't messed with.

    def clone(self) -> "LivenessTracker":
        """Returns a copy of this instance."""
        my_copy = LivenessTracker()
        my_copy._live_vars = self._live_vars.copy()
        return my_copy

    def prepend_stmt(self, stmt: ast.stmt) -> None:
        """Prepends a statement to the list of considered statements and updates the set of live variables."""
        return self.visit(stmt)

    def visit_simple_stmt(self, stmt: ast.stmt) -> None:
        vars_by_usage = find_variables_by_usage(stmt)
        # A variable could be both used and written to.
        self._live_vars -= vars_by_usage[ast.Store]
        self._live_vars |= vars_by_usage[ast.Load]

    def generic_visit(self, stmt: ast.AST, *args, **kwargs) -> None:
        # Statements without a dedicated handler are treated as straight-line code.
        self.visit_simple_stmt(stmt)

    def visit_stmt_list(self, stmts: List[ast.stmt]) -> None:
        """Simply visits the statements in reverse order."""
        for stmt in reversed(stmts):
            self.prepend_stmt(stmt)

    def _merge_branches(self, *branches: List[ast.stmt]) -> Set[str]:
        """Returns the union of the variables live before each of the alternative statement lists."""
        live: Set[str] = set()
        for branch in branches:
            tracker = self.clone()
            tracker.visit_stmt_list(branch)
            live |= tracker.live_vars
        return live

    # Each `visit` method updates the live variable set after prepending the statement passed in.
    def visit_AugAssign(self, aug_assign: ast.AugAssign) -> None:
        self.visit_simple_stmt(aug_assign)
        # The variable assigned to is also live (`x` in `x += 5`).
        self._live_vars |= find_variables_by_usage(aug_assign.target)[ast.Store]

    def visit_Delete(self, delete: ast.Delete) -> None:
        # Deleting a variable reads it.
        self._live_vars |= find_variables_by_usage(delete)[ast.Del]

    def visit_Break(self, _br: ast.Break) -> None:
        pass

    def visit_Continue(self, _cont_stmt: ast.Continue) -> None:
        pass

    def visit_Pass(self, _pass_stmt: ast.Pass) -> None:
        pass

    def visit_Global(self, _global_stmt: ast.Global) -> None:
        pass

    def visit_Nonlocal(self, _nonlocal_stmt: ast.Nonlocal) -> None:
        pass

    def _visit_def(self, defn: Union[ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef]) -> None:
        """A definition binds its name; its decorators (and a class's bases) are evaluated right away."""
        self._live_vars.discard(defn.name)
        for decorator in defn.decorator_list:
            self._live_vars |= find_variables_by_usage(decorator)[ast.Load]
        if isinstance(defn, ast.ClassDef):
            for base in defn.bases:
                self._live_vars |= find_variables_by_usage(base)[ast.Load]

    def visit_FunctionDef(self, func_def: ast.FunctionDef) -> None:
        self._visit_def(func_def)

    def visit_AsyncFunctionDef(self, func_def: ast.AsyncFunctionDef) -> None:
        self._visit_def(func_def)

    def visit_ClassDef(self, class_def: ast.ClassDef) -> None:
        self._visit_def(class_def)

    def visit_If(self, if_stmt: ast.If) -> None:
        live = self._merge_branches(if_stmt.body, if_stmt.orelse)
        self._live_vars = live | find_variables_by_usage(if_stmt.test)[ast.Load]

    def visit_Match(self, match_stmt: ast.Match) -> None:
        live = self._live_vars.copy()  # No case may match.
        for case in match_stmt.cases:
            tracker = self.clone()
            tracker.visit_stmt_list(case.body)
            case_live = tracker.live_vars
            if case.guard is not None:
                case_live |= find_variables_by_usage(case.guard)[ast.Load]
            case_live -= find_variables_by_usage(case.pattern)[ast.Store]
            case_live |= find_variables_by_usage(case.pattern)[ast.Load]  # Value patterns, e.g., `case Color.RED`.
            live |= case_live
        self._live_vars = live | find_variables_by_usage(match_stmt.subject)[ast.Load]

    def _visit_import(self, imp: Union[ast.Import, ast.ImportFrom]) -> None:
        """Common between `Import` and `ImportFrom`."""
        imported_vars = set()
        for alias in imp.names:
            name = alias.asname or alias.name.partition(".")[0]
            imported_vars.add(name)
        # The imported variables are essentially "assigned to" by the import.
        self._live_vars -= imported_vars

    def visit_Import(self, imp: ast.Import) -> None:
        self._visit_import(imp)

    def visit_ImportFrom(self, imp_from: ast.ImportFrom) -> None:
        self._visit_import(imp_from)

    def visit_While(self, while_stmt: ast.While) -> None:
        # The loop may run zero or more times; either way, the test and the `else` clause run at the end.
        self._live_vars = self._merge_branches(while_stmt.orelse)
        body_live = self._merge_branches(while_stmt.body)
        self._live_vars |= body_live | find_variables_by_usage(while_stmt.test)[ast.Load]

    def visit_For(self, for_stmt: Union[ast.For, ast.AsyncFor]) -> None:
        self._live_vars = self._merge_branches(for_stmt.orelse)
        tracker = self.clone()
        tracker.visit_stmt_list(for_stmt.body)
        body_live = tracker.live_vars - find_variables_by_usage(for_stmt.target)[ast.Store]
        self._live_vars |= body_live | find_variables_by_usage(for_stmt.iter)[ast.Load]

    visit_AsyncFor = visit_For

    def visit_Try(self, try_stmt: ast.Try) -> None:
        # Conservatively assume any handler may run after any part of the body.
        final_tracker = self.clone()
        final_tracker.visit_stmt_list(try_stmt.finalbody)
        live = final_tracker.live_vars
        handlers_live: Set[str] = set()
        for handler in try_stmt.handlers:
            tracker = final_tracker.clone()
            tracker.visit_stmt_list(handler.body)
            handler_live = tracker.live_vars
            if handler.name:
                handler_live.discard(handler.name)
            if handler.type is not None:
                handler_live |= find_variables_by_usage(handler.type)[ast.Load]
            handlers_live |= handler_live
        body_tracker = final_tracker.clone()
        body_tracker.visit_stmt_list(try_stmt.orelse)
        body_tracker._live_vars |= handlers_live
        body_tracker.visit_stmt_list(try_stmt.body)
        self._live_vars = live | handlers_live | body_tracker.live_vars

    def visit_With(self, with_stmt: Union[ast.With, ast.AsyncWith]) -> None:
        self.visit_stmt_list(with_stmt.body)
        for item in reversed(with_stmt.items):
            if item.optional_vars is not None:
                self._live_vars -= find_variables_by_usage(item.optional_vars)[ast.Store]
            self._live_vars |= find_variables_by_usage(item.context_expr)[ast.Load]

    visit_AsyncWith = visit_With
