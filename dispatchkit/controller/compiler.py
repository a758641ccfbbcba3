"""
Route Compiler - scans controller directories and writes the route cache.

For every ``<base_dir>/<module>/*.py`` (files starting with ``_`` are
ignored) the file is loaded as ``<module>.<stem>``, every class defined in
it is passed to the metadata extractor, and the combined rules are written
to the route cache artifact.
"""

from typing import Dict, Iterable, List, Tuple, Union
from pathlib import Path
import inspect
import logging

from .cache import RouteCache
from .loader import load_source_module
from .metadata import RouteRule, extract_route_rules
from .._io import DEFAULT_TIMEOUT, bounded

logger = logging.getLogger("dispatchkit.compiler")


class RouteCompiler:
    """
    Compiles controller sources into a route cache artifact.

    Example:
        ```python
        compiler = RouteCompiler("var/routes.json")
        written = compiler.compile("app", ["api", "admin"])
        ```
    """

    def __init__(self, cache: Union[RouteCache, str, Path]):
        self.cache = cache if isinstance(cache, RouteCache) else RouteCache(cache)

    def discover(self, base_dir: Union[str, Path], modules: Iterable[str]) -> List[RouteRule]:
        """
        Extract rules from every controller file under ``base_dir``.

        Files that fail to import are logged and skipped.
        """
        base = Path(base_dir)
        rules: List[RouteRule] = []

        for module in modules:
            directory = base / module
            if not directory.is_dir():
                logger.warning("Controller directory not found: %s", directory)
                continue

            for path in sorted(directory.glob("*.py")):
                if path.name.startswith("_"):
                    continue
                rules.extend(self._compile_file(f"{module}.{path.stem}", path))

        return rules

    def _compile_file(self, module_name: str, path: Path) -> List[RouteRule]:
        try:
            source = load_source_module(module_name, path)
        except Exception as e:
            logger.warning("Skipping controller file %s: %s", path, e, exc_info=True)
            return []

        rules: List[RouteRule] = []
        for obj in list(vars(source).values()):
            if not inspect.isclass(obj) or obj.__module__ != module_name:
                continue
            found = extract_route_rules(obj, source_file=str(path.resolve()))
            if found:
                logger.debug("Compiled %d routes from %s:%s", len(found), module_name, obj.__qualname__)
            rules.extend(found)
        return rules

    def compile(self, base_dir: Union[str, Path], modules: Iterable[str], force: bool = False) -> int:
        """
        Compile controllers and write the route cache.

        Args:
            base_dir: Directory containing the controller module directories
            modules: Module directory names to scan
            force: Rewrite even if the artifact already exists

        Returns:
            Number of rules written (0 when skipped or nothing was found)
        """
        if self.cache.exists() and not force:
            logger.debug("Route cache %s exists; skipping compilation", self.cache.path)
            return 0

        rules = self.discover(base_dir, modules)
        if not rules:
            logger.info("No routes found under %s; route cache not written", base_dir)
            return 0

        for (verb, path), handlers in find_conflicts(rules).items():
            logger.warning("Route %s %s declared by %s; first declaration wins", verb, path, ", ".join(handlers))

        self.cache.dump(rules)
        return len(rules)

    async def compile_async(
        self,
        base_dir: Union[str, Path],
        modules: Iterable[str],
        force: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> int:
        """``compile`` as a bounded I/O join."""
        return await bounded(
            self.compile, base_dir, list(modules), force,
            timeout=timeout, operation=f"compile {self.cache.path}",
        )


def find_conflicts(rules: Iterable[RouteRule]) -> Dict[Tuple[str, str], List[str]]:
    """
    Find (verb, path pattern) pairs declared by more than one handler.

    ALL counts as both GET and POST.
    """
    seen: Dict[Tuple[str, str], List[str]] = {}
    for rule in rules:
        for verb in rule.allowed_methods:
            seen.setdefault((verb, rule.path_pattern), []).append(rule.handler_id)
    return {key: handlers for key, handlers in seen.items() if len(handlers) > 1}


__all__ = ["RouteCompiler", "find_conflicts"]
