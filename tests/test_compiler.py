"""
Tests for route compilation, the route cache artifact and controller
module loading.
"""

import json
import logging
import sys
import threading
import time
from pathlib import Path

import pytest

from dispatchkit.controller.cache import CACHE_FORMAT, RouteCache, rules_digest
from dispatchkit.controller.compiler import RouteCompiler, find_conflicts
from dispatchkit.controller.loader import load_source_module, resolve_controller
from dispatchkit.controller.metadata import RouteRule
from dispatchkit.faults import IOTimeoutFault

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ============================================================================
# RouteCompiler
# ============================================================================


class TestRouteCompiler:
    def test_compile_writes_rules(self, cache_path):
        written = RouteCompiler(cache_path).compile(FIXTURES_DIR, ["api"])

        assert written > 0
        assert cache_path.is_file()
        document = json.loads(cache_path.read_text())
        assert document["format"] == CACHE_FORMAT
        assert len(document["rules"]) == written
        assert document["digest"] == rules_digest(document["rules"])
        assert document["generated_at"]

    def test_second_compile_without_force_skips(self, cache_path):
        compiler = RouteCompiler(cache_path)
        compiler.compile(FIXTURES_DIR, ["api"])
        mtime = cache_path.stat().st_mtime_ns

        assert compiler.compile(FIXTURES_DIR, ["api"]) == 0
        assert cache_path.stat().st_mtime_ns == mtime

    def test_force_rewrites(self, cache_path):
        compiler = RouteCompiler(cache_path)
        first = compiler.compile(FIXTURES_DIR, ["api"])
        cache_path.write_text("stale")

        assert compiler.compile(FIXTURES_DIR, ["api"], force=True) == first
        assert json.loads(cache_path.read_text())["format"] == CACHE_FORMAT

    def test_nothing_found_writes_nothing(self, cache_path):
        assert RouteCompiler(cache_path).compile(FIXTURES_DIR, ["faulty"]) == 0
        assert not cache_path.exists()

    def test_missing_module_directory_is_skipped(self, cache_path):
        assert RouteCompiler(cache_path).compile(FIXTURES_DIR, ["nope"]) == 0

    def test_unimportable_file_is_logged_and_skipped(self, cache_path, caplog):
        with caplog.at_level(logging.WARNING, logger="dispatchkit.compiler"):
            written = RouteCompiler(cache_path).compile(FIXTURES_DIR, ["faulty", "api"])

        assert written > 0
        assert "bad.py" in caplog.text
        assert "faulty.bad" not in sys.modules

    def test_underscore_files_are_ignored(self, cache_path):
        rules = RouteCompiler(cache_path).discover(FIXTURES_DIR, ["api"])
        assert "api._shared" not in sys.modules
        assert all(not r.handler_id.startswith("api._") for r in rules)

    def test_module_names_follow_directory_layout(self, cache_path):
        rules = RouteCompiler(cache_path).discover(FIXTURES_DIR, ["api"])
        refs = {r.controller_ref for r in rules}

        assert "api.users:UsersController" in refs
        assert "api.orders:OrdersController" in refs
        assert "api.broken:BrokenController" in refs

    def test_only_classes_defined_in_the_file_are_scanned(self, cache_path):
        rules = RouteCompiler(cache_path).discover(FIXTURES_DIR, ["api"])
        assert all(r.controller_ref.split(":")[1] != "Controller" for r in rules)

    @pytest.mark.asyncio
    async def test_compile_async(self, cache_path):
        written = await RouteCompiler(cache_path).compile_async(FIXTURES_DIR, ["api"], timeout=10)
        assert written == len(RouteCache(cache_path).load())


class TestFindConflicts:
    def test_same_verb_and_path(self):
        a = RouteRule(handler_id="m:A@x", http_method="GET", path_pattern="/x")
        b = RouteRule(handler_id="m:B@x", http_method="ALL", path_pattern="/x")
        c = RouteRule(handler_id="m:C@x", http_method="PUT", path_pattern="/x")

        conflicts = find_conflicts([a, b, c])
        assert conflicts == {("GET", "/x"): ["m:A@x", "m:B@x"]}


# ============================================================================
# RouteCache
# ============================================================================


class TestRouteCache:
    def test_missing_file_loads_empty(self, tmp_path):
        assert RouteCache(tmp_path / "absent.json").load() == []

    def test_corrupt_file_loads_empty(self, cache_path):
        cache_path.write_text("{not json")
        assert RouteCache(cache_path).load() == []

    def test_unknown_format_loads_empty(self, cache_path):
        cache_path.write_text(json.dumps({"format": 99, "rules": []}))
        assert RouteCache(cache_path).load() == []

    def test_digest_mismatch_loads_empty(self, compiled):
        document = json.loads(compiled.read_text())
        document["rules"][0]["path_pattern"] = "/tampered"
        compiled.write_text(json.dumps(document))

        assert RouteCache(compiled).load() == []

    def test_load_restores_rules_and_controllers(self, rules):
        by_id = {r.handler_id: r for r in rules}
        show = by_id["api.users:UsersController@show"]

        assert show.http_method == "GET"
        assert show.path_pattern == "/users/{id<\\d+>}"
        assert show.controller is sys.modules["api.users"].UsersController
        assert show.argument_bindings[0].default == -1

    def test_dump_then_load_keeps_order(self, tmp_path):
        rules = [
            RouteRule(handler_id=f"m:C@h{i}", http_method="GET", path_pattern=f"/p{i}", controller_ref="m:C")
            for i in range(5)
        ]
        cache = RouteCache(tmp_path / "nested" / "routes.json")
        digest = cache.dump(rules)

        loaded = cache.load()
        assert [r.handler_id for r in loaded] == [r.handler_id for r in rules]
        assert digest == json.loads(cache.path.read_text())["digest"]

    def test_dump_leaves_no_temporary_files(self, tmp_path):
        cache = RouteCache(tmp_path / "routes.json")
        cache.dump([RouteRule(handler_id="m:C@h", http_method="GET", path_pattern="/")])

        leftovers = [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []
        assert cache.lock_path.exists()

    def test_concurrent_writers_never_expose_partial_table(self, tmp_path):
        path = tmp_path / "routes.json"
        tables = {
            f"w{k}": [
                RouteRule(handler_id=f"w{k}:C@h{i}", http_method="GET", path_pattern=f"/w{k}/{i}")
                for i in range(20 + k * 15)
            ]
            for k in range(4)
        }
        RouteCache(path).dump(tables["w0"])

        stop = threading.Event()
        errors = []

        def write(table):
            try:
                while not stop.is_set():
                    RouteCache(path).dump(table)
            except Exception as e:
                errors.append(e)

        writers = [threading.Thread(target=write, args=(t,)) for t in tables.values()]
        for thread in writers:
            thread.start()

        seen = set()
        try:
            deadline = time.monotonic() + 1.0
            while time.monotonic() < deadline:
                loaded = RouteCache(path).load()
                assert loaded, "reader saw an empty table"
                owner = loaded[0].handler_id.split(":")[0]
                assert [r.handler_id for r in loaded] == [r.handler_id for r in tables[owner]]
                seen.add(owner)
        finally:
            stop.set()
            for thread in writers:
                thread.join()

        assert errors == []
        assert seen
        leftovers = [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_unresolvable_controller_loads_without_class(self, tmp_path, caplog):
        cache = RouteCache(tmp_path / "routes.json")
        cache.dump([RouteRule(
            handler_id="gone.module:Missing@h",
            http_method="GET",
            path_pattern="/gone",
            controller_ref="gone.module:Missing",
        )])

        with caplog.at_level(logging.WARNING, logger="dispatchkit.compiler"):
            [rule] = cache.load()
        assert rule.controller is None
        assert "not importable" in caplog.text

    @pytest.mark.asyncio
    async def test_async_round_trip(self, tmp_path):
        cache = RouteCache(tmp_path / "routes.json")
        await cache.dump_async([RouteRule(handler_id="m:C@h", http_method="GET", path_pattern="/")])
        loaded = await cache.load_async()
        assert [r.handler_id for r in loaded] == ["m:C@h"]

    @pytest.mark.asyncio
    async def test_async_timeout_raises_io_fault(self, tmp_path, monkeypatch):
        import time

        cache = RouteCache(tmp_path / "routes.json")
        monkeypatch.setattr(cache, "load", lambda: time.sleep(0.5) or [])

        with pytest.raises(IOTimeoutFault) as exc_info:
            await cache.load_async(timeout=0.05)
        assert exc_info.value.status == 504


# ============================================================================
# Loader
# ============================================================================


class TestLoader:
    def test_load_source_module_registers_module(self, tmp_path):
        source = tmp_path / "widgets.py"
        source.write_text("class Widget:\n    pass\n")

        module = load_source_module("loader_case.widgets", source)
        try:
            assert sys.modules["loader_case.widgets"] is module
            assert resolve_controller("loader_case.widgets:Widget") is module.Widget
        finally:
            sys.modules.pop("loader_case.widgets", None)

    def test_failed_load_is_not_registered(self, tmp_path):
        source = tmp_path / "broken.py"
        source.write_text("raise ValueError('nope')\n")

        with pytest.raises(ValueError):
            load_source_module("loader_case.broken", source)
        assert "loader_case.broken" not in sys.modules

    def test_resolve_from_source_file(self, tmp_path):
        source = tmp_path / "gadgets.py"
        source.write_text("class Gadget:\n    pass\n")
        try:
            cls = resolve_controller("loader_case.gadgets:Gadget", str(source))
            assert cls is not None and cls.__name__ == "Gadget"
        finally:
            sys.modules.pop("loader_case.gadgets", None)

    def test_resolve_unknown_returns_none(self):
        assert resolve_controller("no.such.module:Thing") is None
        assert resolve_controller("malformed") is None
