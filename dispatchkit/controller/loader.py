"""
Controller module loading.

Controller source files are loaded under a dotted name
``<module>.<stem>`` so that ``handler_id`` values stay stable across
processes, and re-resolved from that name (or the recorded file) when a
route cache is read.
"""

import importlib
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Optional, Union

logger = logging.getLogger("dispatchkit.compiler")


def load_source_module(module_name: str, path: Union[str, Path]) -> ModuleType:
    """
    Load a Python file as ``module_name`` and register it in ``sys.modules``.

    Raises:
        ImportError: the file cannot be loaded
    """
    if module_name in sys.modules:
        existing = sys.modules[module_name]
        if getattr(existing, "__file__", None) and Path(existing.__file__).resolve() == Path(path).resolve():
            return existing

    spec = importlib.util.spec_from_file_location(module_name, str(path))
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load controller module from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def resolve_controller(ref: str, source_file: Optional[str] = None) -> Optional[type]:
    """
    Resolve ``"<module>:<Class>"`` to a class.

    Tries already-imported modules, then a regular import, then the
    recorded source file. Returns None when the class cannot be found.
    """
    module_name, _, qualname = ref.partition(":")
    if not module_name or not qualname:
        return None

    module = sys.modules.get(module_name)
    if module is None:
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            module = None

    if module is None and source_file and Path(source_file).is_file():
        try:
            module = load_source_module(module_name, source_file)
        except Exception as e:
            logger.warning("Cannot load controller module %s from %s: %s", module_name, source_file, e)
            return None

    if module is None:
        return None

    obj = module
    for part in qualname.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            return None
    return obj if isinstance(obj, type) else None
