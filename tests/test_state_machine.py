import asyncio
import threading
import unittest

from ramadan_goals.core.app_data import AppDataRepository
from ramadan_goals.plugins.ramadan_window.errors import ResolverError
from ramadan_goals.plugins.ramadan_window.models import (
    FALLBACK_WINDOW,
    RamadanWindow,
    ResolvedSource,
    ResolvedWindowRecord,
    SourceMode,
    WindowStatus,
)
from ramadan_goals.plugins.ramadan_window.resolver import MANUAL_CACHE_KEY
from ramadan_goals.plugins.ramadan_window.service import RamadanSettingsRepository
from ramadan_goals.plugins.ramadan_window.state_machine import (
    LOCATION_REQUIRED_MESSAGE,
    RESOLVE_FAILED_MESSAGE,
    RamadanWindowController,
    infer_target_hijri_year,
)

from tests.fakes import FakeResolver, Gated, MemoryStore, make_window, store_with_ramadan

TODAY = "2026-10-19"

WINDOW_1447 = RamadanWindow(start="2026-02-18", end="2026-03-19", season_year=2026)
WINDOW_1448 = RamadanWindow(start="2027-02-08", end="2027-03-09", season_year=2027)


def api_record(start, end, hijri_year, cache_key, source="api-global", **extra):
    record = {
        "resolvedStart": start,
        "resolvedEnd": end,
        "resolvedSeasonYear": int(start[:4]),
        "resolvedSource": source,
        "resolvedHijriYear": hijri_year,
        "resolvedCacheKey": cache_key,
        "resolveError": "",
    }
    record.update(extra)
    return record


def cached_1448(**extra):
    return api_record("2027-02-08", "2027-03-09", 1448, "global|1448|global", **extra)


def build_controller(store, resolver):
    repository = RamadanSettingsRepository(AppDataRepository(store))
    return RamadanWindowController(repository, resolver, today_provider=lambda: TODAY)


class InferTargetHijriYearTest(unittest.TestCase):
    def record(self, **fields):
        return ResolvedWindowRecord.model_validate(cached_1448(**fields))

    def test_year_known_before_recorded_ramadan_ends(self):
        self.assertEqual(infer_target_hijri_year(self.record(), TODAY), 1448)
        self.assertEqual(infer_target_hijri_year(self.record(), "2027-03-09"), 1448)

    def test_unknown_after_it_ends_or_long_before(self):
        self.assertIsNone(infer_target_hijri_year(self.record(), "2027-03-10"))
        self.assertIsNone(infer_target_hijri_year(self.record(), "2026-03-01"))

    def test_only_api_records_count(self):
        self.assertIsNone(infer_target_hijri_year(self.record(resolvedSource="manual"), TODAY))
        self.assertIsNone(infer_target_hijri_year(self.record(resolvedHijriYear=None), TODAY))
        self.assertIsNone(infer_target_hijri_year(ResolvedWindowRecord(), TODAY))


class StartupTest(unittest.IsolatedAsyncioTestCase):
    async def test_fresh_install_resolves_global_window(self):
        store = MemoryStore()
        resolver = FakeResolver(windows=[make_window("2027-02-08", "2027-03-09")])
        controller = build_controller(store, resolver)

        task = await controller.start()
        self.assertEqual(controller.window, FALLBACK_WINDOW)
        await task

        self.assertEqual(controller.status, WindowStatus.READY)
        self.assertEqual(controller.window, WINDOW_1448)
        self.assertEqual(resolver.call_names(), ["target", "global"])
        stored = store.document()["ramadan"]
        self.assertEqual(stored["resolvedCacheKey"], "global|1448|global")
        self.assertEqual(stored["resolvedSource"], "api-global")
        self.assertEqual(stored["resolvedHijriYear"], 1448)

    async def test_cache_hit_makes_no_resolver_calls(self):
        store = store_with_ramadan(cached_1448())
        resolver = FakeResolver()
        controller = build_controller(store, resolver)

        await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.READY)
        self.assertEqual(controller.window, WINDOW_1448)
        self.assertEqual(resolver.calls, [])
        self.assertEqual(store.writes, [])

    async def test_cache_hit_clears_stored_error(self):
        store = store_with_ramadan(cached_1448(resolveError="AlAdhan request failed (500)"))
        controller = build_controller(store, FakeResolver())

        await (await controller.start())

        self.assertEqual(controller.error, "")
        self.assertEqual(store.document()["ramadan"]["resolveError"], "")

    async def test_new_target_year_forces_fetch(self):
        store = store_with_ramadan(api_record("2026-02-18", "2026-03-19", 1447, "global|1447|global"))
        resolver = FakeResolver(windows=[make_window("2027-02-08", "2027-03-09")])
        controller = build_controller(store, resolver)

        await (await controller.start())

        self.assertEqual(resolver.call_names(), ["target", "global"])
        self.assertEqual(controller.window, WINDOW_1448)

    async def test_failure_keeps_last_window(self):
        store = store_with_ramadan(api_record("2026-02-18", "2026-03-19", 1447, "global|1447|global"))
        resolver = FakeResolver(windows=[ResolverError("AlAdhan request failed (500)")])
        controller = build_controller(store, resolver)

        await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.NEEDS_MANUAL)
        self.assertEqual(controller.error, "AlAdhan request failed (500)")
        self.assertEqual(controller.window, WINDOW_1447)
        stored = store.document()["ramadan"]
        self.assertEqual(stored["resolveError"], "AlAdhan request failed (500)")
        self.assertEqual(stored["resolvedCacheKey"], "global|1447|global")

    async def test_target_year_failure(self):
        resolver = FakeResolver(target_hijri_year=ResolverError("AlAdhan did not return a valid Hijri month/year."))
        controller = build_controller(MemoryStore(), resolver)

        await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.NEEDS_MANUAL)
        self.assertEqual(controller.window, FALLBACK_WINDOW)
        self.assertEqual(resolver.call_names(), ["target"])

    async def test_unexpected_error_gets_generic_message(self):
        resolver = FakeResolver(windows=[KeyError("data")])
        controller = build_controller(MemoryStore(), resolver)

        with self.assertLogs("RamadanWindowController", level="ERROR"):
            await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.NEEDS_MANUAL)
        self.assertEqual(controller.error, RESOLVE_FAILED_MESSAGE)

    async def test_manual_mode_never_calls_resolver(self):
        store = store_with_ramadan({"sourceMode": "manual", "manualStart": "2027-02-07", "manualEnd": "2027-03-08"})
        resolver = FakeResolver()
        controller = build_controller(store, resolver)

        await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.READY)
        self.assertEqual(controller.window.start, "2027-02-07")
        self.assertEqual(controller.window.season_year, 2027)
        self.assertEqual(resolver.calls, [])
        stored = store.document()["ramadan"]
        self.assertEqual(stored["resolvedSource"], "manual")
        self.assertEqual(stored["resolvedCacheKey"], MANUAL_CACHE_KEY)
        self.assertIsNone(stored["resolvedHijriYear"])

    async def test_invalid_manual_dates_need_manual(self):
        store = store_with_ramadan({"sourceMode": "manual", "manualStart": "2027-03-01", "manualEnd": "2027-03-15"})
        resolver = FakeResolver()
        controller = build_controller(store, resolver)

        await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.NEEDS_MANUAL)
        self.assertEqual(controller.error, "Ramadan date range must be 29 or 30 days.")
        self.assertEqual(resolver.calls, [])

    async def test_location_mode_without_country(self):
        store = store_with_ramadan({"sourceMode": "location", "locationCity": "Cairo", "locationCountry": " "})
        resolver = FakeResolver()
        controller = build_controller(store, resolver)

        await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.READY)
        self.assertEqual(controller.error, LOCATION_REQUIRED_MESSAGE)
        self.assertEqual(controller.window, FALLBACK_WINDOW)
        self.assertEqual(resolver.calls, [])
        self.assertEqual(store.document()["ramadan"]["resolveError"], LOCATION_REQUIRED_MESSAGE)

    async def test_store_failures_do_not_stop_resolution(self):
        store = MemoryStore(fail_reads=True, fail_writes=True)
        resolver = FakeResolver(windows=[make_window("2027-02-08", "2027-03-09")])
        controller = build_controller(store, resolver)

        with self.assertLogs("AppDataRepository", level="ERROR"):
            await (await controller.start())

        self.assertEqual(controller.status, WindowStatus.READY)
        self.assertEqual(controller.window, WINDOW_1448)

    async def test_change_callbacks_see_each_transition(self):
        resolver = FakeResolver(windows=[make_window("2027-02-08", "2027-03-09")])
        controller = build_controller(MemoryStore(), resolver)
        seen = []

        def broken(state):
            raise RuntimeError("listener bug")

        controller.register_change_callback(broken)
        controller.register_change_callback(lambda state: seen.append(state.status))
        with self.assertLogs("RamadanWindowController", level="ERROR"):
            await (await controller.start())

        self.assertEqual(seen, [WindowStatus.LOADING, WindowStatus.READY])


class UserActionTest(unittest.IsolatedAsyncioTestCase):
    async def started(self, ramadan, resolver):
        store = store_with_ramadan(ramadan)
        controller = build_controller(store, resolver)
        await (await controller.start())
        return store, controller

    async def test_switching_mode_bypasses_cache(self):
        resolver = FakeResolver(windows=[
            make_window("2027-02-09", "2027-03-10", mode=SourceMode.LOCATION, city="Cairo", country="Egypt"),
        ])
        store, controller = await self.started(
            cached_1448(locationCity="Cairo", locationCountry="Egypt"), resolver
        )
        self.assertEqual(resolver.calls, [])

        await (await controller.set_source_mode("location"))

        self.assertEqual(resolver.call_names(), ["target", "location"])
        self.assertEqual(resolver.calls[1][2:4], ("Cairo", "Egypt"))
        self.assertEqual(controller.source_mode, SourceMode.LOCATION)
        self.assertEqual(controller.window.start, "2027-02-09")
        stored = store.document()["ramadan"]
        self.assertEqual(stored["sourceMode"], "location")
        self.assertTrue(stored["setupComplete"])
        self.assertEqual(stored["resolvedCacheKey"], "location|1448|cairo|egypt")

    async def test_unknown_mode_is_rejected(self):
        _, controller = await self.started(cached_1448(), FakeResolver())
        with self.assertRaises(ValueError):
            await controller.set_source_mode("lunar")
        self.assertEqual(controller.source_mode, SourceMode.GLOBAL)

    async def test_location_update_outside_location_mode_only_persists(self):
        resolver = FakeResolver()
        store, controller = await self.started(cached_1448(), resolver)

        self.assertIsNone(await controller.update_location("Cairo", "Egypt"))

        self.assertEqual(resolver.calls, [])
        self.assertEqual(store.document()["ramadan"]["locationCity"], "Cairo")

    async def test_location_change_invalidates_cache(self):
        cairo = api_record("2027-02-09", "2027-03-10", 1448, "location|1448|cairo|egypt", source="api-location",
                           sourceMode="location", locationCity="Cairo", locationCountry="Egypt")
        resolver = FakeResolver(windows=[
            make_window("2027-02-08", "2027-03-09", mode=SourceMode.LOCATION, city="Alexandria", country="Egypt"),
        ])
        _, controller = await self.started(cairo, resolver)
        self.assertEqual(resolver.calls, [])

        await (await controller.update_location(" cairo ", "EGYPT"))
        self.assertEqual(resolver.calls, [])

        await (await controller.update_location("Alexandria", "Egypt"))
        self.assertEqual(resolver.call_names(), ["location"])
        self.assertEqual(controller.window, WINDOW_1448)

    async def test_retry_always_fetches(self):
        resolver = FakeResolver(windows=[make_window("2027-02-08", "2027-03-09")])
        _, controller = await self.started(cached_1448(), resolver)

        await controller.retry_resolve()

        self.assertEqual(resolver.call_names(), ["target", "global"])

    async def test_only_latest_retry_is_applied(self):
        gate, entered = threading.Event(), threading.Event()
        slow = make_window("2027-02-08", "2027-03-09")
        fast = make_window("2027-02-09", "2027-03-10")
        resolver = FakeResolver(windows=[Gated(slow, gate, entered), fast])
        store, controller = await self.started(cached_1448(), resolver)

        first = controller.retry_resolve()
        await asyncio.to_thread(entered.wait, 5)
        await controller.retry_resolve()
        self.assertEqual(controller.window.start, "2027-02-09")

        gate.set()
        await first

        self.assertEqual(controller.status, WindowStatus.READY)
        self.assertEqual(controller.window.start, "2027-02-09")
        self.assertEqual(store.document()["ramadan"]["resolvedStart"], "2027-02-09")

    async def test_manual_save_supersedes_pending_resolution(self):
        gate, entered = threading.Event(), threading.Event()
        resolver = FakeResolver(windows=[Gated(make_window("2027-02-08", "2027-03-09"), gate, entered)])
        store, controller = await self.started(cached_1448(), resolver)

        pending = controller.retry_resolve()
        await asyncio.to_thread(entered.wait, 5)
        result = await controller.save_manual_window(" 2027-02-07 ", "2027-03-08")
        self.assertTrue(result.ok)
        self.assertEqual(result.season_year, 2027)
        self.assertEqual(controller.status, WindowStatus.READY)

        gate.set()
        await pending

        self.assertEqual(controller.window.start, "2027-02-07")
        self.assertEqual(controller.source_mode, SourceMode.MANUAL)
        stored = store.document()["ramadan"]
        self.assertEqual(stored["manualStart"], "2027-02-07")
        self.assertEqual(stored["resolvedSource"], ResolvedSource.MANUAL.value)
        self.assertEqual(stored["resolvedStart"], "2027-02-07")

    async def test_invalid_manual_save_keeps_config(self):
        store, controller = await self.started(cached_1448(), FakeResolver())

        result = await controller.save_manual_window("2027-02-07", "2027-02-20")

        self.assertFalse(result.ok)
        self.assertEqual(result.error, "Ramadan date range must be 29 or 30 days.")
        self.assertEqual(controller.status, WindowStatus.NEEDS_MANUAL)
        self.assertEqual(controller.source_mode, SourceMode.GLOBAL)
        self.assertEqual(controller.window, WINDOW_1448)
        self.assertEqual(store.writes, [])


if __name__ == "__main__":
    unittest.main()
