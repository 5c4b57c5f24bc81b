"""Unit tests for the resumable-block compiler, through `@cort.resumable` and through `cotransform.transform`."""
import ast
import asyncio
import logging
import os
import textwrap
from typing import Any, Dict, List

import pytest

import cort
from cort import Marker, reenter, suspend
from cort.global_state import dump_ctrl
import cotransform
from cotransform import NodeNotSupportedError, PointKind


def _exec_transformed(source: str) -> Dict[str, Any]:
    """Compiles the resumable blocks of a module and runs it; returns the module's namespace."""
    mod = ast.parse(textwrap.dedent(source))
    mod, _ = cotransform.transform(mod)
    namespace: Dict[str, Any] = {}
    exec(compile(mod, "<transformed>", "exec"), namespace)
    return namespace


def _transform(source: str):
    return cotransform.transform(ast.parse(textwrap.dedent(source)))


def _run_to_end(func, marker: Marker, *args, max_invocations: int = 100) -> int:
    """Invokes a resumable function until its marker is finished; returns the number of invocations."""
    invocations = 0
    while not marker.is_finished():
        assert invocations < max_invocations
        func(marker, *args)
        invocations += 1
    return invocations


@cort.resumable
def nested_loops(marker, out: List, grid):
    with cort.reenter(marker):
        while grid.rows:
            grid.row = grid.rows.pop(0)
            grid.cols = list(grid.row)
            while grid.cols:
                grid.col = grid.cols.pop(0)
                if grid.col < 0:
                    cort.suspend(cort.TERMINATE)
                elif grid.col % 2:
                    out.append(grid.col)
                    cort.suspend()
                else:
                    out.append(-grid.col)
            out.append("row")
            cort.suspend(cort.CONTINUE)
        out.append("done")


class Grid(object):
    def __init__(self, rows):
        self.rows = rows


def test_nested_loops():
    out: List = []
    invocations = _run_to_end(nested_loops, Marker(), out, Grid([[1, 2, 3], [4], [5]]))
    assert out == [1, -2, 3, "row", -4, "row", 5, "row", "done"]
    assert invocations == 7


def test_terminate_in_nested_loop():
    out: List = []
    marker = Marker()
    invocations = _run_to_end(nested_loops, marker, out, Grid([[2, -1, 3], [5]]))
    assert out == [-2]
    assert invocations == 1

    nested_loops(marker, out, Grid([[1]]))
    assert out == [-2]


def test_closure_and_imported_names():
    out = []

    @cort.resumable
    def body(marker):
        with reenter(marker):
            out.append(1)
            suspend()
            out.append(2)

    marker = Marker()
    body(marker)
    assert out == [1] and marker.step == 1
    body(marker)
    assert out == [1, 2] and marker.is_finished()
    assert body.__name__ == "body"


def test_defaults_are_kept():
    @cort.resumable
    def body(marker, out, value=1, *, extra=2):
        with cort.reenter(marker):
            out.append(value)
            cort.suspend()
            out.append(extra)

    out: List = []
    assert _run_to_end(body, Marker(), out) == 2
    assert out == [1, 2]


def test_return_keeps_marker():
    @cort.resumable
    def body(marker, out, stop):
        with cort.reenter(marker):
            out.append("a")
            cort.suspend()
            if stop:
                return "stopped"
            out.append("b")
        return "end"

    marker = Marker()
    out: List = []
    assert body(marker, out, False) == "end"
    assert body(marker, out, True) == "stopped"
    assert marker == Marker(1)
    assert body(marker, out, False) == "end"
    assert out == ["a", "b"] and marker.is_finished()


def test_code_outside_block_runs_every_time():
    @cort.resumable
    def body(marker, out):
        out.append("enter")
        with cort.reenter(marker):
            cort.suspend()
        out.append("exit")

    out: List = []
    marker = Marker()
    for _ in range(3):
        body(marker, out)
    assert out == ["enter", "exit"] * 3


def test_for_loop_reevaluates_iterable():
    @cort.resumable
    def body(marker, out):
        with cort.reenter(marker):
            for i in range(3):
                out.append(i)
                cort.suspend()

    out: List = []
    marker = Marker()
    for _ in range(3):
        body(marker, out)
    assert out == [0, 0, 0]


def test_multiple_blocks():
    @cort.resumable
    def body(first, second, out):
        with cort.reenter(first):
            out.append("first")
            cort.suspend()
        with cort.reenter(second):
            out.append("second")
            cort.suspend()
            out.append("second again")

    out: List = []
    first, second = Marker(), Marker()
    body(first, second, out)
    body(first, second, out)
    assert out == ["first", "second", "second again"]
    assert first.is_finished() and second.is_finished()


def test_fork_without_expression():
    @cort.resumable
    def body(marker, out):
        with cort.reenter(marker):
            cort.fork()
            out.append("child" if cort.is_child() else "parent")
            cort.suspend()
            out.append("parent" if cort.is_parent() else "child")

    out: List = []
    child = Marker(1, cort.Role.CHILD)
    body(child, out)
    assert child == Marker(2)

    # After its first suspend point, a child runs as a parent.
    body(child, out)
    assert out == ["child", "parent"]
    assert child.is_finished()

    out.clear()
    marker = Marker()
    body(marker, out)
    body(marker, out)
    assert out == ["parent", "parent"]
    assert marker.is_finished()


def test_reset_restarts_body():
    @cort.resumable
    def body(marker, out):
        with cort.reenter(marker):
            out.append("top")
            cort.suspend()
            out.append("middle")
            cort.suspend()
            out.append("bottom")

    out: List = []
    marker = Marker()
    body(marker, out)
    body(marker, out)
    assert marker.step == 2

    cort.reset(marker)
    body(marker, out)
    assert out == ["top", "middle", "top"]
    assert marker.step == 1


class Counter(cort.Coroutine):
    def __init__(self) -> None:
        self.__count = 0

    @property
    def count(self) -> int:
        return self.__count

    @cort.resumable
    def __call__(self):
        with cort.reenter(self):
            self.__count += 1
            cort.suspend()
            self.__count += 10


def test_private_names_in_methods():
    counter = Counter()
    counter()
    assert counter.count == 1
    counter()
    assert counter.count == 11
    assert counter.is_finished()
    assert Counter.__call__.__qualname__ == "Counter.__call__"


def test_private_names_with_super():
    class Base(cort.Coroutine):
        def greeting(self) -> str:
            return "hello"

    class Greeter(Base):
        def __init__(self) -> None:
            self.__log: List[str] = []

        def log(self) -> List[str]:
            return self.__log

        @cort.resumable
        def __call__(self):
            with cort.reenter(self):
                self.__log.append(super().greeting())
                cort.suspend()
                self.__log.append("bye")

    greeter = Greeter()
    greeter()
    greeter()
    assert greeter.log() == ["hello", "bye"]


def test_resume_step_mismatch():
    @cort.resumable
    def body(marker):
        with cort.reenter(marker):
            cort.suspend()

    with pytest.raises(cort.ResumeStepError):
        body(Marker(2))


def test_async_function():
    @cort.resumable
    async def body(marker, out):
        with cort.reenter(marker):
            out.append(await asyncio.sleep(0, result=1))
            cort.suspend()
            out.append(2)

    out: List = []
    marker = Marker()
    asyncio.run(body(marker, out))
    asyncio.run(body(marker, out))
    assert out == [1, 2]


def test_no_block():
    def body(marker):
        return marker

    with pytest.raises(ValueError, match="no `with cort.reenter"):
        cort.resumable(body)


def _identity(func):
    return func


def test_not_innermost_decorator():
    with pytest.raises(ValueError, match="innermost"):
        @cort.resumable
        @_identity
        def body(marker):
            with cort.reenter(marker):
                cort.suspend()


def test_dump_dir(tmpdir, monkeypatch):
    monkeypatch.setattr(dump_ctrl, "dump_dir", str(tmpdir))

    @cort.resumable
    def body(marker):
        with cort.reenter(marker):
            cort.suspend()

    files = os.listdir(str(tmpdir))
    assert len(files) == 1
    with open(os.path.join(str(tmpdir), files[0])) as f:
        assert "resume_step(1)" in f.read()


def test_top_level_break_finishes():
    namespace = _exec_transformed("""
        import cort

        def body(marker, out):
            with cort.reenter(marker):
                out.append(1)
                cort.suspend()
                if out:
                    break
                out.append(2)
    """)
    marker = Marker()
    out: List = []
    namespace["body"](marker, out)
    namespace["body"](marker, out)
    assert out == [1]
    assert marker.is_finished()


def test_module_aliases():
    namespace = _exec_transformed("""
        import cort as co
        from cort import suspend as pause

        def body(marker, out):
            with co.reenter(marker):
                out.append(1)
                pause()
                out.append(2)
    """)
    marker = Marker()
    out: List = []
    assert _run_to_end(namespace["body"], marker, out) == 2
    assert out == [1, 2]


def test_gather_runtime_names():
    mod = ast.parse("import cort as co\nfrom cort import suspend as pause, Marker\nimport os")
    names = cotransform.gather_runtime_names(mod)
    assert names.modules == frozenset({"co"})
    assert dict(names.api) == {"pause": "suspend"}


def test_block_info():
    _, blocks = _transform("""
        import cort

        def body(marker):
            with cort.reenter(marker):
                cort.suspend()
                cort.fork(print())
                cort.suspend(cort.TERMINATE)
    """)
    assert len(blocks) == 1
    assert blocks[0].func_name == "body"
    assert [(p.step, p.kind) for p in blocks[0].points] == [
        (1, PointKind.SUSPEND), (2, PointKind.FORK), (3, PointKind.TERMINATE)]


def test_resumable_decorator_stripped():
    mod, _ = _transform("""
        import cort

        @cort.resumable
        def body(marker):
            with cort.reenter(marker):
                cort.suspend()
    """)
    func_def = mod.body[1]
    assert isinstance(func_def, ast.FunctionDef)
    assert func_def.decorator_list == []


@pytest.mark.parametrize("source, message", [
    ("""
     def body(marker):
         with cort.reenter(marker):
             try:
                 cort.suspend()
             finally:
                 pass
     """, "inside Try"),
    ("""
     def body(marker, lock):
         with cort.reenter(marker):
             with lock:
                 cort.suspend()
     """, "inside With"),
    ("""
     def body(marker, other):
         with cort.reenter(marker):
             with cort.reenter(other):
                 cort.suspend()
     """, "Nested reenter"),
    ("""
     def body(marker):
         with cort.reenter(marker) as m:
             cort.suspend()
     """, "as"),
    ("""
     def body(marker, lock):
         with cort.reenter(marker), lock:
             cort.suspend()
     """, "only context manager"),
    ("""
     def body(marker):
         with cort.reenter(marker):
             x = cort.suspend()
     """, "must be used as statements"),
    ("""
     def body(marker):
         with cort.reenter(marker):
             cort.suspend(1, 2)
     """, "at most one"),
    ("""
     with cort.reenter(marker):
         cort.suspend()
     """, "outside of a function"),
])
def test_unsupported(source: str, message: str):
    with pytest.raises(NodeNotSupportedError, match=message):
        _transform("import cort\n" + textwrap.dedent(source))


def test_transform_function_rejects_non_functions():
    names = cotransform.RuntimeNames.from_globals(globals())
    with pytest.raises(NodeNotSupportedError):
        cotransform.transform_function(ast.parse("x = 1").body[0], names)


def test_runtime_names_from_globals():
    names = cotransform.RuntimeNames.from_globals(globals())
    assert "cort" in names.modules
    assert names.api["reenter"] == "reenter"
    assert names.api["suspend"] == "suspend"


def test_lost_local_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="cotransform.steps"):
        _transform("""
            import cort

            def body(marker, out):
                with cort.reenter(marker):
                    total = 1
                    cort.suspend()
                    out.append(total)
        """)
    assert len(caplog.records) == 1
    assert "'total'" in caplog.records[0].getMessage()


def test_lost_local_warning_ignores_outside_names(caplog):
    with caplog.at_level(logging.WARNING, logger="cotransform.steps"):
        _transform("""
            import cort

            def body(marker, state, out):
                count = len(out)
                with cort.reenter(marker):
                    while state.items:
                        item = state.items.pop()
                        cort.suspend()
                        state.items = [x for x in state.items if x != item]
                        out.append(count)
        """)
    # `count` is bound on every invocation; `x` belongs to the comprehension.
    messages = [record.getMessage() for record in caplog.records]
    assert len(messages) == 1
    assert "'item'" in messages[0]


def test_restarting_for_loop_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="cotransform.steps"):
        _transform("""
            import cort

            def body(marker, state, out):
                with cort.reenter(marker):
                    for i in range(3):
                        out.append(i)
                        cort.suspend()
                    for state.x in state.items:
                        cort.suspend()
        """)
    messages = [record.getMessage() for record in caplog.records if "for loop" in record.getMessage()]
    assert len(messages) == 1
    assert "line 6" in messages[0]
    assert "persistent iterator" in messages[0]
