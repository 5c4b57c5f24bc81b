"""Definition-time compilation of resumable functions."""
import ast
import functools
import inspect
import logging
import textwrap
import types
from typing import Callable, List, Optional, TypeVar

from .global_state import dump_ctrl

logger = logging.getLogger(__name__)

FuncT = TypeVar("FuncT", bound=Callable)

_FACTORY_NAME = "_co_factory"


def _find_code(code: types.CodeType, name: str) -> types.CodeType:
    """Returns the code object of a function defined directly in `code`."""
    for const in code.co_consts:
        if isinstance(const, types.CodeType) and const.co_name == name:
            return const
    raise LookupError(f"no code object named {name!r} in {code.co_name!r}")


def _wrap_in_factory(func_def: ast.stmt, freevars: List[str]) -> ast.FunctionDef:
    """
    Wraps a function (or class) definition in a factory function taking the free variables as parameters, so that
    the compiled function refers to them as free variables again instead of globals.
    """
    assert isinstance(func_def, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
    args = ast.arguments(posonlyargs=[], args=[ast.arg(arg=name, annotation=None) for name in freevars], vararg=None,
                         kwonlyargs=[], kw_defaults=[], kwarg=None, defaults=[])
    factory = ast.FunctionDef(name=_FACTORY_NAME, args=args,
                              body=[func_def, ast.Return(value=ast.Name(id=func_def.name, ctx=ast.Load()))],
                              decorator_list=[], returns=None, type_comment=None)
    if hasattr(ast.FunctionDef, "type_params"):
        factory.type_params = []
    return ast.copy_location(factory, func_def)


def _enclosing_class_name(func: Callable) -> Optional[str]:
    """Returns the name of the innermost class a function is defined in, if any; private names are mangled with it."""
    parts = func.__qualname__.split(".")[:-1]
    while parts:
        if parts[-1] == "<locals>":
            del parts[-2:]  # An enclosing function.
        else:
            return parts[-1]
    return None


def _wrap_in_class(func_def: ast.stmt, class_name: str) -> ast.ClassDef:
    """Wraps a method definition in an empty class of the same name, so that `self.__x` is mangled as in the original."""
    class_def = ast.ClassDef(name=class_name, bases=[], keywords=[], body=[func_def], decorator_list=[])
    if hasattr(ast.ClassDef, "type_params"):
        class_def.type_params = []
    return ast.copy_location(class_def, func_def)


def _dump_source(func: Callable, func_def: ast.stmt) -> None:
    import astor

    path = dump_ctrl.dump_path(func.__module__, func.__qualname__)
    with open(path, "w") as f:
        f.write(astor.to_source(func_def))
    logger.debug("wrote generated code of %s to %s", func.__qualname__, path)


def resumable(func: FuncT) -> FuncT:
    """
    Compiles the resumable blocks (`with cort.reenter(...):`) of a function.

    Must be the innermost decorator.  The function's source must be available to `inspect`.  The compiled function
    shares the original's globals, defaults and closure cells.
    """
    from cotransform import RuntimeNames, transform_function
    from cotransform.runtime_names import RESUMABLE

    source_lines, first_lineno = inspect.getsourcelines(func)
    mod = ast.parse(textwrap.dedent("".join(source_lines)))
    ast.increment_lineno(mod, first_lineno - 1)
    func_def = mod.body[0]
    if not isinstance(func_def, (ast.FunctionDef, ast.AsyncFunctionDef)):
        raise TypeError(f"{func.__qualname__} is not defined by a def statement")

    names = RuntimeNames.from_globals(func.__globals__)
    if func_def.decorator_list and names.resolve(func_def.decorator_list[-1]) != RESUMABLE:
        raise ValueError(f"{func.__qualname__}: resumable must be the innermost decorator")
    func_def.decorator_list = []

    func_def, blocks = transform_function(func_def, names)
    if not blocks:
        raise ValueError(f"{func.__qualname__} has no `with cort.reenter(...):` block")
    logger.debug("compiled %s: %d block(s) with %s resume point(s)", func.__qualname__, len(blocks),
                 ", ".join(str(len(block.points)) for block in blocks))

    if dump_ctrl.should_dump():
        _dump_source(func, func_def)

    # Code object path: [_co_factory] -> [class] -> function.
    path: List[str] = []
    defn: ast.stmt = func_def
    class_name = _enclosing_class_name(func)
    if class_name is not None:
        defn = _wrap_in_class(defn, class_name)
        path.append(class_name)
    freevars = list(func.__code__.co_freevars)
    if freevars:
        defn = _wrap_in_factory(defn, freevars)
        path.insert(0, _FACTORY_NAME)
    path.append(func.__name__)

    mod.body = [defn]
    mod = ast.fix_missing_locations(mod)
    code = compile(mod, func.__code__.co_filename, "exec")
    for name in path:
        code = _find_code(code, name)

    closure = None
    if freevars:
        cells = dict(zip(freevars, func.__closure__ or ()))
        closure = tuple(cells[name] for name in code.co_freevars)

    compiled = types.FunctionType(code, func.__globals__, func.__name__, func.__defaults__, closure)
    compiled.__kwdefaults__ = func.__kwdefaults__
    functools.update_wrapper(compiled, func)
    return compiled  # type: ignore
