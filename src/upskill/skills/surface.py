"""
API surface analysis -- what an installed package exposes.

Python packages are read with ``ast`` (no import, no code execution):
public functions, classes and their public methods, honoring ``__all__``.
NPM packages are read from their TypeScript declarations (``types`` /
``typings`` or ``index.d.ts``); without declarations the JavaScript entry
point is scanned for exports and the surface is flagged as untyped.

The README contributes usage examples and the authentication hints that
decide whether the package needs a credential.
"""

import ast
import json
import re
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from ..registry.models import PackageSummary

logger = structlog.get_logger()

MAX_OPERATIONS = 200
MAX_EXAMPLES = 5
MAX_MODULES = 40

_AUTH_RE = re.compile(
    r"\b(api[\s_-]?keys?|access[\s_-]?tokens?|bearer|authorization header|"
    r"client[\s_-]?secret|secret[\s_-]?key|oauth2?|personal access token|"
    r"auth[\s_-]?token)\b",
    re.IGNORECASE,
)
_AUTH_PARAM_RE = re.compile(r"\b(api_?key|apiKey|access_?token|accessToken|client_?secret|auth_?token)\b")
_CODE_BLOCK_RE = re.compile(r"```([\w+-]*)\n(.*?)```", re.DOTALL)

_TS_FUNCTION_RE = re.compile(
    r"export\s+(?:declare\s+)?(?:default\s+)?(async\s+)?function\s+(\w+)\s*(<[^>(]*>)?\s*\(([^)]*)\)\s*(?::\s*([^;{]+))?",
)
_TS_CLASS_RE = re.compile(r"export\s+(?:declare\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)[^{]*\{")
_TS_CONST_RE = re.compile(r"export\s+(?:declare\s+)?const\s+(\w+)\s*:\s*([^;=]+)")
_TS_METHOD_RE = re.compile(
    r"^\s*(?:(?:public|static|async|readonly)\s+)*(\w+)\s*(?:<[^>(]*>)?\s*\(([^)]*)\)\s*:\s*([^;]+);",
    re.MULTILINE,
)
_JS_EXPORT_RE = re.compile(
    r"(?:module\.)?exports\.(\w+)\s*=|export\s+(?:async\s+)?function\s+(\w+)\s*\(([^)]*)\)",
)

CAPABILITY_PATTERNS: dict[str, re.Pattern[str]] = {
    "http": re.compile(r"request|fetch|http|client|axios|url", re.IGNORECASE),
    "auth": re.compile(r"auth|login|token|oauth|credential|session", re.IGNORECASE),
    "parsing": re.compile(r"parse|serializ|loads|dumps|decode|encode|schema", re.IGNORECASE),
    "files": re.compile(r"file|path|upload|download|read|write", re.IGNORECASE),
    "streaming": re.compile(r"stream|subscribe|websocket|socket|event", re.IGNORECASE),
    "cli": re.compile(r"\bcli\b|command|argv|argparse|prompt", re.IGNORECASE),
}
_CRUD_VERBS = ("create", "get", "list", "update", "delete")


@dataclass
class Operation:
    """One public entry point of a package."""

    name: str
    signature: str
    summary: str = ""
    kind: str = "function"  # "function" | "class" | "method" | "constant"


@dataclass
class ApiSurface:
    """Everything the scaffolder needs to describe a package."""

    operations: list[Operation] = field(default_factory=list)
    has_type_info: bool = False
    requires_auth: bool = False
    auth_hints: list[str] = field(default_factory=list)
    examples: list[str] = field(default_factory=list)

    @property
    def primary_operations(self) -> list[Operation]:
        """Top-level functions and classes first, then methods and constants."""
        order = {"function": 0, "class": 1, "method": 2, "constant": 3}
        return sorted(self.operations, key=lambda op: order.get(op.kind, 4))


class ApiSurfaceAnalyzer:
    """Builds an ApiSurface from an installed package and its registry summary."""

    def analyze(self, install_path: str | Path, summary: PackageSummary) -> ApiSurface:
        path = Path(install_path)
        if summary.registry == "pypi":
            operations, typed = self._analyze_python(path)
            typed = typed or summary.has_type_info
        else:
            operations, typed = self._analyze_npm(path)

        hints = self._auth_hints(summary.readme)
        param_auth = any(_AUTH_PARAM_RE.search(op.signature) for op in operations)
        if param_auth and not hints:
            hints = ["credential parameter in the public API"]

        surface = ApiSurface(
            operations=operations[:MAX_OPERATIONS],
            has_type_info=typed,
            requires_auth=bool(hints),
            auth_hints=hints,
            examples=self._examples(summary.readme),
        )
        logger.info(
            "surface.analyzed",
            package=summary.name,
            operations=len(surface.operations),
            typed=surface.has_type_info,
            requires_auth=surface.requires_auth,
        )
        return surface

    # ── Python ───────────────────────────────────────────────────────────

    def _analyze_python(self, path: Path) -> tuple[list[Operation], bool]:
        if path.is_dir():
            typed = (path / "py.typed").exists()
            init = path / "__init__.py"
            files = [init] if init.exists() else []
            files += sorted(
                p for p in path.glob("*.py")
                if p.name != "__init__.py" and not p.name.startswith("_")
            )[:MAX_MODULES]
        else:
            single = path.with_suffix(".py")
            typed = False
            files = [single] if single.exists() else []

        operations: list[Operation] = []
        seen: set[str] = set()
        for file in files:
            prefix = "" if file.name == "__init__.py" or not path.is_dir() else f"{file.stem}."
            for op in self._python_module_operations(file, prefix):
                if op.name not in seen:
                    seen.add(op.name)
                    operations.append(op)
        return operations, typed

    def _python_module_operations(self, file: Path, prefix: str) -> list[Operation]:
        try:
            tree = ast.parse(file.read_text(encoding="utf-8"), filename=str(file))
        except (OSError, SyntaxError, UnicodeDecodeError, ValueError) as e:
            logger.debug("surface.python.unparsable", file=str(file), error=str(e))
            return []

        exported = _dunder_all(tree)
        operations: list[Operation] = []
        for node in tree.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                if not _is_public(node.name, exported):
                    continue
                if isinstance(node, ast.ClassDef):
                    operations.extend(self._python_class(node, prefix))
                else:
                    operations.append(
                        Operation(
                            name=f"{prefix}{node.name}",
                            signature=_py_signature(node, prefix=prefix),
                            summary=_first_line(ast.get_docstring(node)),
                        )
                    )
        return operations

    def _python_class(self, node: ast.ClassDef, prefix: str) -> list[Operation]:
        init = next(
            (n for n in node.body if isinstance(n, ast.FunctionDef) and n.name == "__init__"),
            None,
        )
        args = _py_args(init, drop_self=True) if init else ""
        ops = [
            Operation(
                name=f"{prefix}{node.name}",
                signature=f"{prefix}{node.name}({args})",
                summary=_first_line(ast.get_docstring(node)),
                kind="class",
            )
        ]
        for item in node.body:
            if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)) and not item.name.startswith("_"):
                ops.append(
                    Operation(
                        name=f"{prefix}{node.name}.{item.name}",
                        signature=_py_signature(item, drop_self=True, prefix=f"{prefix}{node.name}."),
                        summary=_first_line(ast.get_docstring(item)),
                        kind="method",
                    )
                )
        return ops

    # ── NPM ──────────────────────────────────────────────────────────────

    def _analyze_npm(self, path: Path) -> tuple[list[Operation], bool]:
        manifest = _read_json(path / "package.json")
        types_entry = manifest.get("types") or manifest.get("typings")
        candidates = [path / types_entry] if types_entry else []
        candidates.append(path / "index.d.ts")

        for declaration in candidates:
            if declaration.is_file():
                text = declaration.read_text(encoding="utf-8", errors="replace")
                return self._typescript_operations(text), True

        main = path / (manifest.get("main") or "index.js")
        if main.is_dir():
            main = main / "index.js"
        if not main.is_file() and not main.suffix:
            main = main.with_suffix(".js")
        if main.is_file():
            text = main.read_text(encoding="utf-8", errors="replace")
            return self._javascript_operations(text), False
        return [], False

    def _typescript_operations(self, text: str) -> list[Operation]:
        operations: list[Operation] = []
        for m in _TS_FUNCTION_RE.finditer(text):
            is_async, name, generics, params, returns = m.groups()
            signature = f"{name}{generics or ''}({_squash(params)})"
            if returns:
                signature += f": {_squash(returns)}"
            if is_async:
                signature = f"async {signature}"
            operations.append(Operation(name=name, signature=signature, summary=_jsdoc_before(text, m.start())))

        for m in _TS_CLASS_RE.finditer(text):
            name = m.group(1)
            body = _brace_body(text, m.end() - 1)
            ctor = re.search(r"constructor\s*\(([^)]*)\)", body)
            operations.append(
                Operation(
                    name=name,
                    signature=f"new {name}({_squash(ctor.group(1)) if ctor else ''})",
                    summary=_jsdoc_before(text, m.start()),
                    kind="class",
                )
            )
            for method in _TS_METHOD_RE.finditer(body):
                method_name, params, returns = method.groups()
                if method_name == "constructor" or method_name.startswith("_"):
                    continue
                operations.append(
                    Operation(
                        name=f"{name}.{method_name}",
                        signature=f"{name}.{method_name}({_squash(params)}): {_squash(returns)}",
                        summary=_jsdoc_before(body, method.start()),
                        kind="method",
                    )
                )

        for m in _TS_CONST_RE.finditer(text):
            name, type_ = m.groups()
            operations.append(
                Operation(name=name, signature=f"{name}: {_squash(type_)}", kind="constant")
            )
        return operations

    def _javascript_operations(self, text: str) -> list[Operation]:
        operations: list[Operation] = []
        seen: set[str] = set()
        for m in _JS_EXPORT_RE.finditer(text):
            cjs_name, esm_name, params = m.groups()
            name = cjs_name or esm_name
            if name in seen or name.startswith("_"):
                continue
            seen.add(name)
            signature = f"{name}({_squash(params)})" if esm_name else name
            operations.append(Operation(name=name, signature=signature, summary=_jsdoc_before(text, m.start())))
        return operations

    # ── README ───────────────────────────────────────────────────────────

    def _auth_hints(self, readme: str) -> list[str]:
        """Sentences of the README that talk about credentials (max 3)."""
        hints: list[str] = []
        for sentence in re.split(r"(?<=[.!?])\s+|\n{2,}", readme):
            if _AUTH_RE.search(sentence):
                cleaned = " ".join(sentence.split())
                if cleaned and cleaned not in hints:
                    hints.append(cleaned[:200])
            if len(hints) == 3:
                break
        return hints

    def _examples(self, readme: str) -> list[str]:
        examples = []
        for lang, code in _CODE_BLOCK_RE.findall(readme):
            if lang.lower() in ("", "bash", "sh", "shell", "console", "text"):
                continue
            examples.append(f"```{lang}\n{code.strip()}\n```")
            if len(examples) == MAX_EXAMPLES:
                break
        return examples


# ── Derived metadata ─────────────────────────────────────────────────────


def infer_capabilities(surface: ApiSurface, summary: PackageSummary) -> list[str]:
    """Short tags describing what the package does."""
    haystack = " ".join(
        [op.name for op in surface.operations] + summary.keywords + [summary.description]
    )
    tags = {tag for tag, pattern in CAPABILITY_PATTERNS.items() if pattern.search(haystack)}

    names = " ".join(op.name.lower() for op in surface.operations)
    if sum(1 for verb in _CRUD_VERBS if verb in names) >= 3:
        tags.add("crud")
    if any(op.signature.startswith("async ") or "Promise<" in op.signature for op in surface.operations):
        tags.add("async")
    if surface.requires_auth:
        tags.add("auth")
    if surface.has_type_info:
        tags.add("typed")
    return sorted(tags)


def infer_triggers(summary: PackageSummary, limit: int = 20) -> list[str]:
    """Keywords that should make a future request pick this skill."""
    words = [summary.name.lower()]
    words += [p for p in re.split(r"[@/._-]+", summary.name.lower()) if len(p) > 1]
    words += [k.lower().strip() for k in summary.keywords if k.strip()]
    triggers: list[str] = []
    for word in words:
        if word not in triggers:
            triggers.append(word)
    return triggers[:limit]


# ── Helpers ──────────────────────────────────────────────────────────────


def _dunder_all(tree: ast.Module) -> set[str] | None:
    for node in tree.body:
        if isinstance(node, ast.Assign) and any(
            isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets
        ):
            if isinstance(node.value, (ast.List, ast.Tuple)):
                return {
                    elt.value for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                }
    return None


def _is_public(name: str, exported: set[str] | None) -> bool:
    if exported is not None:
        return name in exported
    return not name.startswith("_")


def _py_args(node: ast.FunctionDef | ast.AsyncFunctionDef, drop_self: bool = False) -> str:
    args = node.args
    if drop_self and args.args and args.args[0].arg in ("self", "cls"):
        args = ast.arguments(
            posonlyargs=args.posonlyargs,
            args=args.args[1:],
            vararg=args.vararg,
            kwonlyargs=args.kwonlyargs,
            kw_defaults=args.kw_defaults,
            kwarg=args.kwarg,
            defaults=args.defaults,
        )
    return ast.unparse(args)


def _py_signature(
    node: ast.FunctionDef | ast.AsyncFunctionDef,
    drop_self: bool = False,
    prefix: str = "",
) -> str:
    signature = f"{prefix}{node.name}({_py_args(node, drop_self)})"
    if node.returns is not None:
        signature += f" -> {ast.unparse(node.returns)}"
    if isinstance(node, ast.AsyncFunctionDef):
        signature = f"async {signature}"
    return signature


def _first_line(doc: str | None) -> str:
    if not doc:
        return ""
    return doc.strip().splitlines()[0].strip()


def _squash(text: str | None) -> str:
    return " ".join((text or "").split())


def _jsdoc_before(text: str, index: int) -> str:
    """First line of the /** */ comment directly preceding index."""
    window = text[max(0, index - 2000):index].rstrip()
    if not window.endswith("*/"):
        return ""
    start = window.rfind("/**")
    if start == -1:
        return ""
    for line in window[start + 3:-2].splitlines():
        line = line.strip().lstrip("*").strip()
        if line and not line.startswith("@"):
            return line
    return ""


def _brace_body(text: str, open_index: int) -> str:
    """Text between the brace at open_index and its matching close brace."""
    depth = 0
    for i in range(open_index, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return text[open_index + 1:i]
    return text[open_index + 1:]


def _read_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}
