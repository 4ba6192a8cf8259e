from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from scanner import YalError


NATIVE_API_VERSION = 1

DEFAULT_MODULES = ("ext.console", "ext.files", "ext.web", "ext.static_server")


class YalExtensionError(YalError):
    pass


@dataclass(frozen=True)
class ModuleMetadata:
    name: str
    version: str = "0.0.0"


NativeImpl = Callable[..., Any]


@dataclass(frozen=True)
class NativeFunction:
    name: str
    params: Tuple[str, ...]
    impl: NativeImpl
    doc: str = ""

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass
class NativeRegistry:
    _modules: Dict[str, Dict[str, NativeFunction]] = field(default_factory=dict)
    metadata: List[ModuleMetadata] = field(default_factory=list)

    def register(self, module_name: str, function: NativeFunction) -> None:
        if not module_name or not isinstance(module_name, str):
            raise YalExtensionError("Native module name must be a non-empty string")
        if not function.name:
            raise YalExtensionError(f"Native function in module '{module_name}' must have a name")
        functions = self._modules.setdefault(module_name, {})
        if function.name in functions:
            raise YalExtensionError(f"Native function '{module_name}.{function.name}' is already defined")
        functions[function.name] = function

    def module(self, module_name: str) -> Optional[Dict[str, NativeFunction]]:
        return self._modules.get(module_name)

    def resolve(self, module_name: str, name: str) -> Optional[NativeFunction]:
        functions = self._modules.get(module_name)
        if functions is None:
            return None
        return functions.get(name)

    def version(self, module_name: str) -> Optional[str]:
        for meta in reversed(self.metadata):
            if meta.name == module_name:
                return meta.version
        return None

    def module_names(self) -> List[str]:
        return sorted(self._modules)

    def describe(self) -> List[Tuple[str, str, Tuple[str, ...], str]]:
        rows = []
        for module_name in self.module_names():
            for name, function in sorted(self._modules[module_name].items()):
                rows.append((module_name, name, function.params, function.doc))
        return rows


class NativeModuleAPI:
    def __init__(self, *, registry: NativeRegistry, module_name: str) -> None:
        self._registry = registry
        self._module_name = module_name

    @property
    def module_name(self) -> str:
        return self._module_name

    def metadata(self, *, version: str = "0.0.0") -> None:
        self._registry.metadata.append(ModuleMetadata(name=self._module_name, version=version))

    def register_function(self, name: str, params: Sequence[str], impl: NativeImpl, *, doc: str = "") -> None:
        if not callable(impl):
            raise YalExtensionError(f"Native function '{self._module_name}.{name}' must be callable")
        self._registry.register(self._module_name, NativeFunction(name=name, params=tuple(params), impl=impl, doc=doc))

    def function(self, name: str, params: Sequence[str], *, doc: str = ""):
        def deco(fn: NativeImpl) -> NativeImpl:
            self.register_function(name, params, fn, doc=doc)
            return fn

        return deco


def load_extension_module(path: str) -> Any:
    """Import a native extension file under a name unique to its path.

    The file's directory is on ``sys.path`` while it executes, so an extension
    can import helper modules that sit next to it.
    """
    path = os.path.abspath(path)
    if not os.path.isfile(path):
        raise YalExtensionError(f"Extension not found: {path}")
    stem = os.path.splitext(os.path.basename(path))[0]
    tag = hashlib.sha1(path.encode("utf-8")).hexdigest()[:10]
    spec = importlib.util.spec_from_file_location(f"yal_ext_{stem}_{tag}", path)
    if spec is None or spec.loader is None:
        raise YalExtensionError(f"Cannot import extension: {path}")
    module = importlib.util.module_from_spec(spec)
    directory = os.path.dirname(path)
    sys.path.insert(0, directory)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise YalExtensionError(f"Extension {path} failed to import: {exc}") from exc
    finally:
        sys.path.remove(directory)
    return module


def read_yalx(pointer_file: str) -> List[str]:
    if not os.path.exists(pointer_file):
        raise YalExtensionError(f".yalx file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    out: List[str] = []
    with open(pointer_file, "r", encoding="utf-8") as handle:
        for raw in handle.read().splitlines():
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            if not os.path.isabs(line):
                line = os.path.abspath(os.path.join(base_dir, line))
            out.append(line)
    return out


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    expanded: List[str] = []
    for p in paths:
        if p.lower().endswith(".yalx"):
            expanded.extend(read_yalx(p))
        else:
            expanded.append(p)
    return [os.path.abspath(p) for p in expanded]


def register_module(registry: NativeRegistry, module: Any, *, default_name: str) -> None:
    api_version = getattr(module, "YAL_NATIVE_API_VERSION", NATIVE_API_VERSION)
    if api_version != NATIVE_API_VERSION:
        raise YalExtensionError(
            f"Native module {default_name} requires API {api_version}, host supports {NATIVE_API_VERSION}"
        )
    register = getattr(module, "yal_register", None)
    if register is None or not callable(register):
        raise YalExtensionError(f"Native module {default_name} must define callable yal_register(api)")
    module_name = str(getattr(module, "YAL_NATIVE_MODULE", default_name))
    register(NativeModuleAPI(registry=registry, module_name=module_name))


def build_default_registry() -> NativeRegistry:
    registry = NativeRegistry()
    for dotted in DEFAULT_MODULES:
        module = importlib.import_module(dotted)
        register_module(registry, module, default_name=dotted.rsplit(".", 1)[-1])
    return registry


def load_native_registry(paths: Sequence[str] = ()) -> NativeRegistry:
    registry = build_default_registry()
    for path in gather_extension_paths(paths):
        module = load_extension_module(path)
        register_module(registry, module, default_name=os.path.splitext(os.path.basename(path))[0])
    return registry


def render(value: Any) -> str:
    """Format an unwrapped value the way scripts expect to see it printed."""
    if value is None:
        return "void"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        value = float(value)
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)
