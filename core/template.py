"""Template and expression resolution utilities."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
import ast
import operator
import re

from .ordering import CycleError, topological_order


_PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_EXPRESSION_PATTERN = re.compile(r"^\s*\[\[(?P<expr>.*)\]\]\s*$", re.DOTALL)
_SINGLE_PLACEHOLDER_PATTERN = re.compile(r"^\s*\{\{([^{}]+)\}\}\s*$")

_ALLOWED_BIN_OPS: dict[type[ast.AST], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_ALLOWED_UNARY_OPS: dict[type[ast.AST], Any] = {
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_ALLOWED_COMPARISONS: dict[type[ast.AST], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


@dataclass(frozen=True)
class _AllowedCallSpec:
    func: Callable[..., Any]
    min_args: int = 1
    max_args: Optional[int] = 1


_ALLOWED_CALLS: dict[str, _AllowedCallSpec] = {
    "str": _AllowedCallSpec(str, 1, 1),
    "int": _AllowedCallSpec(int, 1, 1),
    "bool": _AllowedCallSpec(bool, 1, 1),
    "lower": _AllowedCallSpec(lambda text: str(text).lower(), 1, 1),
    "upper": _AllowedCallSpec(lambda text: str(text).upper(), 1, 1),
    "min": _AllowedCallSpec(min, 1, None),
    "max": _AllowedCallSpec(max, 1, None),
}


class TemplateError(ValueError):
    """Raised when template resolution fails."""


@dataclass(slots=True)
class TemplateResolver:
    """Resolves templates and expressions using a nested mapping context.

    Strings of the form ``{{a.b}}`` are replaced by the value found at that
    path; a string consisting of a single placeholder keeps the value's type.
    Strings wrapped in ``[[ ... ]]`` are evaluated as restricted Python
    expressions after placeholder substitution, so ``"[[ {{platform.win64}} ]]"``
    yields a bool.
    """

    context: Mapping[str, Any]
    _cache: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def resolve(self, value: Any) -> Any:
        return self._resolve_value(value, stack=[])

    def _resolve_value(self, value: Any, *, stack: list[str]) -> Any:
        if isinstance(value, str):
            return self._resolve_string(value, stack=stack)
        if isinstance(value, list):
            return [self._resolve_value(item, stack=list(stack)) for item in value]
        if isinstance(value, tuple):
            return tuple(self._resolve_value(item, stack=list(stack)) for item in value)
        if isinstance(value, Mapping):
            return {key: self._resolve_value(val, stack=list(stack)) for key, val in value.items()}
        return value

    def _resolve_string(self, value: str, *, stack: list[str]) -> Any:
        expression_match = _EXPRESSION_PATTERN.match(value)
        if expression_match:
            expr = self._substitute(expression_match.group("expr"), stack=stack, for_expression=True)
            return self._evaluate_expression(expr.strip())
        placeholder_match = _SINGLE_PLACEHOLDER_PATTERN.match(value)
        if placeholder_match:
            return self._resolve_path(placeholder_match.group(1).strip(), stack=stack)
        return self._substitute(value, stack=stack, for_expression=False)

    def _substitute(self, text: str, *, stack: list[str], for_expression: bool) -> str:
        def replacement(match: re.Match[str]) -> str:
            result = self._resolve_path(match.group(1).strip(), stack=stack)
            if for_expression or isinstance(result, (dict, list, tuple)):
                return repr(result)
            if isinstance(result, bool):
                return "yes" if result else "no"
            return str(result)

        if not _PLACEHOLDER_PATTERN.search(text):
            return text
        return _PLACEHOLDER_PATTERN.sub(replacement, text)

    def _resolve_path(self, path: str, *, stack: list[str]) -> Any:
        if path in self._cache:
            return self._cache[path]
        if path in stack:
            cycle = " -> ".join(stack + [path])
            raise TemplateError(f"Circular dependency detected: {cycle}")

        raw_value = self._lookup_raw(path)
        stack.append(path)
        resolved = self._resolve_value(raw_value, stack=stack)
        stack.pop()
        self._cache[path] = resolved
        return resolved

    def _lookup_raw(self, path: str) -> Any:
        current: Any = self.context
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
                continue
            if isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
                continue
            raise TemplateError(f"Cannot resolve path '{path}' in template context")
        if current is None:
            raise TemplateError(f"Template variable '{path}' has no value")
        return current

    def _evaluate_expression(self, expression: str) -> Any:
        try:
            node = ast.parse(expression, mode="eval")
        except SyntaxError as exc:
            raise TemplateError(f"Invalid expression syntax: {exc.msg}") from exc
        return _ExpressionEvaluator().visit(node)


def extract_placeholders(value: Any) -> set[str]:
    """Collect all template placeholder paths referenced within *value*."""

    placeholders: set[str] = set()

    def _collect(obj: Any) -> None:
        if isinstance(obj, str):
            for match in _PLACEHOLDER_PATTERN.finditer(obj):
                path = match.group(1).strip()
                if path:
                    placeholders.add(path)
            return
        if isinstance(obj, Mapping):
            for item in obj.values():
                _collect(item)
            return
        if isinstance(obj, (list, tuple)):
            for item in obj:
                _collect(item)

    _collect(value)
    return placeholders


def build_dependency_map(
    mapping: Mapping[str, Any],
    *,
    prefixes: Sequence[str],
    pre_resolved: Iterable[str] | None = None,
) -> Dict[str, List[str]]:
    """Construct a dependency graph for placeholder resolution."""

    dependency_map: Dict[str, List[str]] = {str(key): [] for key in mapping.keys()}
    keys_in_scope = set(dependency_map.keys())
    pre_resolved_set = {str(key) for key in pre_resolved} if pre_resolved else set()

    for raw_key, value in mapping.items():
        key = str(raw_key)
        deps: set[str] = set()
        for placeholder in extract_placeholders(value):
            for prefix in prefixes:
                if not placeholder.startswith(prefix):
                    continue
                dep_name = placeholder[len(prefix):].strip().split(".", 1)[0]
                if dep_name in keys_in_scope and dep_name not in pre_resolved_set:
                    deps.add(dep_name)
        dependency_map[key] = sorted(deps)
    return dependency_map


def resolve_variable_table(
    variables: Mapping[str, Any],
    *,
    context: Mapping[str, Any],
    prefix: str = "variables.",
) -> Dict[str, Any]:
    """Resolve a table of user variables that may reference each other.

    Variables are resolved in dependency order so each one sees the already
    resolved values of the variables it names through ``prefix``.
    """

    dependency_map = build_dependency_map(variables, prefixes=(prefix,))
    try:
        order = topological_order(dependency_map)
    except CycleError as exc:
        raise TemplateError(f"Variable {exc}") from exc

    namespace = prefix.rstrip(".")
    resolved: Dict[str, Any] = {}
    for name in order:
        scope = dict(context)
        scope[namespace] = dict(resolved)
        resolved[name] = TemplateResolver(scope).resolve(variables[name])
    return {name: resolved[name] for name in variables}


class _ExpressionEvaluator(ast.NodeVisitor):
    def visit(self, node: ast.AST) -> Any:  # type: ignore[override]
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in {"True", "False", "None"}:
                return {"True": True, "False": False, "None": None}[node.id]
            raise TemplateError(f"Name '{node.id}' is not allowed in expressions")
        if isinstance(node, ast.BinOp):
            op_type = type(node.op)
            if op_type not in _ALLOWED_BIN_OPS:
                raise TemplateError(f"Operator '{op_type.__name__}' is not allowed")
            return _ALLOWED_BIN_OPS[op_type](self.visit(node.left), self.visit(node.right))
        if isinstance(node, ast.UnaryOp):
            op_type = type(node.op)
            if op_type not in _ALLOWED_UNARY_OPS:
                raise TemplateError(f"Unary operator '{op_type.__name__}' is not allowed")
            return _ALLOWED_UNARY_OPS[op_type](self.visit(node.operand))
        if isinstance(node, ast.BoolOp):
            values = [bool(self.visit(value)) for value in node.values]
            return all(values) if isinstance(node.op, ast.And) else any(values)
        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                op_type = type(op)
                if op_type not in _ALLOWED_COMPARISONS:
                    raise TemplateError(f"Comparison operator '{op_type.__name__}' is not allowed")
                right = self.visit(comparator)
                if not _ALLOWED_COMPARISONS[op_type](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            condition = self.visit(node.test)
            return self.visit(node.body if condition else node.orelse)
        if isinstance(node, ast.List):
            return [self.visit(element) for element in node.elts]
        if isinstance(node, ast.Tuple):
            return tuple(self.visit(element) for element in node.elts)
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise TemplateError("Only simple function names are allowed in expressions")
            func_name = node.func.id
            if func_name not in _ALLOWED_CALLS:
                raise TemplateError(f"Function '{func_name}' is not allowed in expressions")
            if node.keywords:
                raise TemplateError(f"Keyword arguments are not allowed for function '{func_name}'")
            spec = _ALLOWED_CALLS[func_name]
            args = [self.visit(arg) for arg in node.args]
            if len(args) < spec.min_args or (spec.max_args is not None and len(args) > spec.max_args):
                raise TemplateError(f"Function '{func_name}' called with {len(args)} arguments")
            try:
                return spec.func(*args)
            except (TypeError, ValueError) as exc:
                raise TemplateError(f"Function '{func_name}' could not convert value: {exc}") from exc
        raise TemplateError(f"Expression node '{type(node).__name__}' is not allowed")


__all__ = [
    "TemplateError",
    "TemplateResolver",
    "build_dependency_map",
    "extract_placeholders",
    "resolve_variable_table",
]
