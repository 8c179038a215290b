"""Sandboxed snippet evaluation for link transfer code and script activities.

Snippets are plain Python. Before anything runs, a snippet is parsed and
checked against the namespaces the caller allows: importing anything else,
touching dunder attributes or using a name that nothing provides is reported
as a compilation error, with every problem listed at once. Evaluation happens
with a reduced set of builtins, the selected modules and the caller's
variables as the only globals. When the last statement is an expression its
value is returned.

The set of namespaces that can be offered to snippets is a
:class:`LibraryCatalog`. It is discovered once per process by
:func:`default_catalog` (guarded by a lock, so concurrent first use waits for
a single discovery) or built explicitly and handed to a :class:`ScriptRunner`.
"""
from __future__ import annotations

import ast
import asyncio
import builtins
import importlib
import logging
import pkgutil
import sys
import threading
from dataclasses import dataclass, field
from types import CodeType, ModuleType
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .errors import ScriptCompilationError, ScriptRuntimeError
from .models import LogLevel

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "<flow-script>"

DEFAULT_IMPORTS: Tuple[str, ...] = (
    "collections",
    "datetime",
    "decimal",
    "functools",
    "itertools",
    "json",
    "math",
    "re",
    "statistics",
    "string",
    "uuid",
    "xml.etree.ElementTree",
)

SAFE_BUILTINS: Tuple[str, ...] = (
    "abs", "all", "any", "bin", "bool", "bytes", "chr", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hasattr", "hash",
    "hex", "int", "isinstance", "issubclass", "iter", "len", "list", "map",
    "max", "min", "next", "oct", "ord", "pow", "print", "range", "repr",
    "reversed", "round", "set", "slice", "sorted", "str", "sum", "tuple", "zip",
    "ArithmeticError", "AttributeError", "Exception", "IndexError", "KeyError",
    "LookupError", "NotImplementedError", "RuntimeError", "StopIteration",
    "TypeError", "ValueError", "ZeroDivisionError",
)

LogCallback = Callable[[LogLevel, str], Awaitable[None]]


def object_or_array(source: Any, select: Callable[[Any], Any]) -> List[Any]:
    """Map ``select`` over a list, or over a single record, for values that may be either."""
    if isinstance(source, (list, tuple)):
        return [select(item) for item in source]
    if isinstance(source, dict):
        return [select(source)]
    return []


class LibraryCatalog:
    """Immutable registry of the namespaces snippets may be given access to."""

    def __init__(self, namespaces: Iterable[str]) -> None:
        self._namespaces: FrozenSet[str] = frozenset(n.split(".")[0] for n in namespaces)

    @classmethod
    def discover(cls) -> "LibraryCatalog":
        """Enumerate every top level module the interpreter can import."""
        names = set(sys.builtin_module_names)
        names.update(info.name for info in pkgutil.iter_modules())
        names.update(name.split(".")[0] for name in list(sys.modules))
        catalog = cls(name for name in names if not name.startswith("_"))
        logger.debug("Discovered %d importable namespaces", len(catalog))
        return catalog

    @property
    def namespaces(self) -> FrozenSet[str]:
        return self._namespaces

    def __contains__(self, namespace: object) -> bool:
        return isinstance(namespace, str) and namespace.split(".")[0] in self._namespaces

    def __len__(self) -> int:
        return len(self._namespaces)

    def select(self, namespaces: Sequence[str]) -> Dict[str, ModuleType]:
        """Import the requested namespaces the catalog knows, keyed by their last component."""
        modules: Dict[str, ModuleType] = {}
        for namespace in namespaces:
            if namespace not in self:
                logger.debug("Namespace %s is not available to scripts", namespace)
                continue
            try:
                module = importlib.import_module(namespace)
            except Exception as exc:
                logger.warning("Unable to load namespace %s because: %s", namespace, exc)
                continue
            modules[namespace.rsplit(".", 1)[-1]] = module
        return modules


_catalog: Optional[LibraryCatalog] = None
_catalog_lock = threading.Lock()


def default_catalog() -> LibraryCatalog:
    """Process wide catalog, discovered on first use."""
    global _catalog
    if _catalog is None:
        with _catalog_lock:
            if _catalog is None:
                _catalog = LibraryCatalog.discover()
    return _catalog


def _namespace_allowed(name: str, allowed: Sequence[str]) -> bool:
    return any(name == ns or name.startswith(ns + ".") for ns in allowed)


class _SnippetChecker(ast.NodeVisitor):
    """Collects every reason a snippet may not run in the sandbox."""

    def __init__(self, known: Iterable[str], allowed: Sequence[str]) -> None:
        self.known = set(known)
        self.allowed = allowed
        self.bound: set = set()
        self.loads: List[ast.Name] = []
        self.problems: List[Tuple[int, int, str]] = []

    def check(self, tree: ast.AST) -> List[str]:
        self.visit(tree)
        for node in self.loads:
            if node.id not in self.known and node.id not in self.bound:
                self._report(node, f"name '{node.id}' is not defined")
        self.problems.sort(key=lambda p: (p[0], p[1]))
        return [f"{SCRIPT_FILENAME}({line},{col}): error: {msg}" for line, col, msg in self.problems]

    def _report(self, node: ast.AST, message: str) -> None:
        self.problems.append(
            (getattr(node, "lineno", 0), getattr(node, "col_offset", 0) + 1, message)
        )

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if not _namespace_allowed(alias.name, self.allowed):
                self._report(node, f"namespace '{alias.name}' is not in the allowed namespaces")
            self.bound.add(alias.asname or alias.name.split(".")[0])

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        module = node.module or ""
        if node.level or not _namespace_allowed(module, self.allowed):
            self._report(node, f"namespace '{'.' * node.level}{module}' is not in the allowed namespaces")
        for alias in node.names:
            self.bound.add(alias.asname or alias.name)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("__"):
            self._report(node, f"access to attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._report(node, f"access to name '{node.id}' is not allowed")
        if isinstance(node.ctx, ast.Load):
            self.loads.append(node)
        else:
            self.bound.add(node.id)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self.bound.add(node.name)
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._report(node, "class definitions are not supported in scripts")

    def visit_arg(self, node: ast.arg) -> None:
        self.bound.add(node.arg)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self.bound.add(node.name)
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        self.bound.update(node.names)

    visit_Nonlocal = visit_Global


@dataclass
class CompiledScript:
    """A checked snippet ready to run."""

    source: str
    body: Optional[CodeType]
    tail: Optional[CodeType]
    modules: Dict[str, ModuleType] = field(default_factory=dict)
    allowed: Tuple[str, ...] = ()


class ScriptRunner:
    """Compiles and evaluates snippets against an allowed set of namespaces."""

    def __init__(self, catalog: Optional[LibraryCatalog] = None) -> None:
        self.catalog = catalog or default_catalog()

    def compile(
        self, code: str, imports: Sequence[str], variables: Optional[Dict[str, Any]] = None
    ) -> CompiledScript:
        allowed = tuple(imports)
        modules = self.catalog.select(allowed)

        try:
            tree = ast.parse(code, filename=SCRIPT_FILENAME, mode="exec")
        except SyntaxError as exc:
            raise ScriptCompilationError(
                [f"{SCRIPT_FILENAME}({exc.lineno},{exc.offset}): error: {exc.msg}"], code
            )

        known = set(SAFE_BUILTINS) | {"object_or_array"} | set(modules) | set(variables or {})
        diagnostics = _SnippetChecker(known, allowed).check(tree)
        if diagnostics:
            raise ScriptCompilationError(diagnostics, code)

        statements = list(tree.body)
        tail_node = None
        if statements and isinstance(statements[-1], ast.Expr):
            tail_node = ast.Expression(body=statements.pop().value)

        try:
            body = None
            if statements:
                module = ast.fix_missing_locations(ast.Module(body=statements, type_ignores=[]))
                body = compile(module, SCRIPT_FILENAME, "exec")
            tail = None
            if tail_node is not None:
                tail = compile(ast.fix_missing_locations(tail_node), SCRIPT_FILENAME, "eval")
        except SyntaxError as exc:
            raise ScriptCompilationError(
                [f"{SCRIPT_FILENAME}({exc.lineno},{exc.offset}): error: {exc.msg}"], code
            )

        return CompiledScript(source=code, body=body, tail=tail, modules=modules, allowed=allowed)

    async def evaluate(
        self,
        code: str,
        imports: Sequence[str],
        variables: Optional[Dict[str, Any]] = None,
        log: Optional[LogCallback] = None,
    ) -> Any:
        """Best effort evaluation: any failure is logged and ``None`` returned."""
        variables = variables or {}
        try:
            compiled = await asyncio.to_thread(self.compile, code, imports, variables)
            await self._log_references(compiled, log)
            return await asyncio.to_thread(self._execute, compiled, variables)
        except Exception as exc:
            if log is None:
                logger.warning("Script failed to compile: %s", exc)
                return None
            await log(LogLevel.ERROR, "Script failed to compile.")
            await log(LogLevel.ERROR, str(exc))
            if isinstance(exc, ScriptCompilationError):
                await log(LogLevel.ERROR, f"Source of the problem:\n{exc.source}")
            return None

    async def run(
        self,
        code: str,
        imports: Sequence[str],
        variables: Dict[str, Any],
        log: Optional[LogCallback] = None,
    ) -> Any:
        """Evaluate a snippet, raising enriched errors on failure."""
        compiled = await asyncio.to_thread(self.compile, code, imports, variables)
        await self._log_references(compiled, log)
        try:
            return await asyncio.to_thread(self._execute, compiled, variables)
        except (AttributeError, TypeError) as exc:
            if "NoneType" not in str(exc):
                raise
            raise _enrich(exc) from exc

    async def run_action(
        self,
        code: str,
        imports: Sequence[str],
        variables: Dict[str, Any],
        log: Optional[LogCallback] = None,
    ) -> None:
        await self.run(code, imports, variables, log)

    async def _log_references(self, compiled: CompiledScript, log: Optional[LogCallback]) -> None:
        if log is None:
            return
        message = (
            "\nImports\n  " + "\n  ".join(compiled.allowed)
            + "\n\nReferences Needed\n  "
            + "\n  ".join(m.__name__ for m in compiled.modules.values())
        )
        await log(LogLevel.DEBUG, message)

    def _execute(self, compiled: CompiledScript, variables: Dict[str, Any]) -> Any:
        scope: Dict[str, Any] = {
            "__builtins__": _sandbox_builtins(compiled.allowed),
            "__name__": "__flow_script__",
        }
        scope.update(compiled.modules)
        scope.update(variables)
        if compiled.body is not None:
            exec(compiled.body, scope)
        if compiled.tail is not None:
            return eval(compiled.tail, scope)
        return None


def _sandbox_builtins(allowed: Tuple[str, ...]) -> Dict[str, Any]:
    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level or not _namespace_allowed(name, allowed):
            raise ImportError(f"Namespace '{name}' is not in the allowed namespaces")
        return importlib.__import__(name, globals, locals, fromlist, level)

    names = {name: getattr(builtins, name) for name in SAFE_BUILTINS}
    names["__import__"] = guarded_import
    names["object_or_array"] = object_or_array
    return names


def _enrich(exc: BaseException) -> ScriptRuntimeError:
    """Describe the call site of a None dereference raised while running a snippet."""
    site = None
    script_site = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == SCRIPT_FILENAME:
            script_site = tb
        site = tb
        tb = tb.tb_next
    site = script_site or site

    data: Dict[str, Any] = dict(getattr(exc, "data", None) or {})
    if isinstance(exc, AttributeError) and getattr(exc, "name", None):
        data.setdefault("attribute", exc.name)

    if site is None:
        return ScriptRuntimeError(str(exc), target="<unknown>", data=data)

    frame = site.tb_frame
    owner = frame.f_locals.get("self")
    declaring = type(owner).__name__ if owner is not None else frame.f_globals.get("__name__", "<script>")
    return ScriptRuntimeError(
        str(exc),
        target=f"({declaring}).{frame.f_code.co_name}",
        context=f"{frame.f_code.co_filename} line {site.tb_lineno}",
        data=data,
    )
