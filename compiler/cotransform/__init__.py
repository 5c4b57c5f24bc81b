"""
Resumable-block compiler.

Rewrites the body of every `with cort.reenter(marker):` statement into a flat dispatch over resume steps, so that each
invocation of the enclosing function runs exactly one slice of the body.  See `steps` for the generated code.
"""
import ast
from typing import List, Optional, Tuple

from .node_visitor import NodeNotSupportedError
from .runtime_names import RuntimeNames, gather_runtime_names
from .steps import BlockInfo, PointKind, ResumePoint, StepTransformer

__all__ = [
    "BlockInfo", "NodeNotSupportedError", "PointKind", "ResumePoint", "RuntimeNames", "gather_runtime_names",
    "transform", "transform_function",
]


def transform(mod: ast.Module, *, names: Optional[RuntimeNames] = None) -> Tuple[ast.Module, List[BlockInfo]]:
    """
    Transforms a module.  Mutates the AST.

    :param names: the names under which the module refers to the runtime; gathered from the module's imports if not
        given.
    :return: the transformed module and a description of every compiled block.
    """
    if names is None:
        names = gather_runtime_names(mod)

    transformer = StepTransformer(names)
    mod = transformer.visit(mod)

    fixed_mod = ast.fix_missing_locations(mod)
    assert isinstance(fixed_mod, ast.Module)
    return fixed_mod, transformer.blocks


def transform_function(func_def: ast.stmt, names: RuntimeNames) -> Tuple[ast.stmt, List[BlockInfo]]:
    """Transforms a single function definition.  Mutates the AST."""
    if not isinstance(func_def, (ast.FunctionDef, ast.AsyncFunctionDef)):
        raise NodeNotSupportedError(func_def, "Only functions can be resumable")

    transformer = StepTransformer(names)
    transformed = transformer.visit(func_def)
    return ast.fix_missing_locations(transformed), transformer.blocks
