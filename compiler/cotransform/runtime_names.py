"""
Finds the names under which a module refers to the `cort` runtime.

The compiler recognizes resumable-block statements syntactically: `cort.suspend()` if `cort` is bound to the runtime
module, or `suspend()` if the name was imported from it.  Names can be gathered either from a module's import
statements (offline compilation) or from a live globals dictionary (definition-time compilation).
"""
import ast
from typing import Dict, FrozenSet, Mapping, NamedTuple, Optional

RUNTIME_MODULE = "cort"

# Names of the runtime API the compiler understands.
REENTER = "reenter"
SUSPEND = "suspend"
FORK = "fork"
IS_CHILD = "is_child"
IS_PARENT = "is_parent"
TERMINATE = "TERMINATE"
CONTINUE = "CONTINUE"
RESUMABLE = "resumable"

RUNTIME_API = frozenset({REENTER, SUSPEND, FORK, IS_CHILD, IS_PARENT, TERMINATE, CONTINUE, RESUMABLE})


class RuntimeNames(NamedTuple):
    """Local names bound to the runtime module and to individual runtime API objects."""
    modules: FrozenSet[str]
    api: Mapping[str, str]  # Local name -> runtime API name.

    def resolve(self, node: ast.expr) -> Optional[str]:
        """Returns the runtime API name an expression refers to, or None if it doesn't refer to the runtime."""
        if isinstance(node, ast.Name):
            return self.api.get(node.id)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name) and node.value.id in self.modules:
            if node.attr in RUNTIME_API:
                return node.attr
        return None

    def resolve_call(self, node: ast.AST) -> Optional[str]:
        """Returns the runtime API name called by a `Call` node, or None."""
        if isinstance(node, ast.Call):
            return self.resolve(node.func)
        return None

    @staticmethod
    def from_globals(global_vars: Mapping[str, object]) -> "RuntimeNames":
        """Gathers runtime names from a globals dictionary, e.g., that of a function being compiled."""
        import cort

        api_objects = [(name, getattr(cort, name)) for name in RUNTIME_API]
        modules = set()
        api: Dict[str, str] = {}
        for name, value in global_vars.items():
            if value is cort:
                modules.add(name)
                continue
            for api_name, api_object in api_objects:
                if value is api_object:
                    api[name] = api_name
        return RuntimeNames(modules=frozenset(modules), api=api)


def gather_runtime_names(mod: ast.Module) -> RuntimeNames:
    """Returns the runtime names bound by a module's top-level import statements."""
    modules = set()
    api: Dict[str, str] = {}

    for stmt in mod.body:
        if isinstance(stmt, ast.Import):
            for alias in stmt.names:
                if alias.name == RUNTIME_MODULE:
                    modules.add(alias.asname or alias.name)
        elif isinstance(stmt, ast.ImportFrom) and stmt.module == RUNTIME_MODULE and not stmt.level:
            for alias in stmt.names:
                if alias.name in RUNTIME_API:
                    api[alias.asname or alias.name] = alias.name

    return RuntimeNames(modules=frozenset(modules), api=api)
