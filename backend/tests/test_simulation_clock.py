import asyncio

import pytest

from app.schemas.simulation import VehicleStatus
from app.services import geo
from app.services.simulation_clock import SimulationClock, advance_vehicle
from app.services.tick_sync import TickSyncQueue
from app.services.vehicle_factory import VehicleStateFactory

from conftest import make_input

SPEED = 1000.0  # m/s keeps the tests short


async def _vehicles(fake_resolver, fake_time, *inputs):
    factory = VehicleStateFactory(fake_resolver, now=fake_time)
    out = {}
    for data in inputs:
        v = await factory.create(data)
        out[v.shipment_id] = v
    return out


@pytest.mark.asyncio
async def test_tick_advances_and_is_monotonic(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"))
    clock = SimulationClock(vehicles, average_speed_mps=SPEED, speed_multiplier=1, now=fake_time)

    last = 0.0
    for _ in range(5):
        fake_time.advance(10)
        report = await clock.tick()
        v = vehicles["A"]
        assert report.advanced == ["A"]
        assert v.traveled_distance >= last
        assert 0 <= v.traveled_distance <= v.route_distance
        last = v.traveled_distance
    assert last == pytest.approx(50 * SPEED)


@pytest.mark.asyncio
async def test_speed_multiplier_is_clamped(fake_resolver, fake_time):
    clock = SimulationClock({}, speed_multiplier=10_000, now=fake_time)
    assert clock.speed_multiplier == 500
    clock.speed_multiplier = -1
    assert clock.speed_multiplier == 0


@pytest.mark.asyncio
async def test_zero_multiplier_holds_position(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"))
    clock = SimulationClock(vehicles, average_speed_mps=SPEED, speed_multiplier=0, now=fake_time)
    assert clock.speed_multiplier == 0

    fake_time.advance(10)
    await clock.tick()
    assert vehicles["A"].status is VehicleStatus.EN_ROUTE
    assert vehicles["A"].traveled_distance == 0


@pytest.mark.asyncio
async def test_explicit_zero_settings_are_kept(fake_time):
    clock = SimulationClock({}, interval_s=0, average_speed_mps=0, max_consecutive_failed_ticks=0, now=fake_time)
    assert clock.interval_s == 0
    assert clock.average_speed_mps == 0
    assert clock.max_consecutive_failed_ticks == 0


@pytest.mark.asyncio
async def test_arrival_switches_to_pending_and_stops_advancing(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"))
    clock = SimulationClock(vehicles, average_speed_mps=SPEED, speed_multiplier=500, now=fake_time)

    fake_time.advance(3600)
    report = await clock.tick()
    v = vehicles["A"]
    assert report.arrived == ["A"]
    assert v.status is VehicleStatus.PENDING_DELIVERY_CONFIRMATION
    assert v.traveled_distance == v.route_distance

    fake_time.advance(60)
    report = await clock.tick()
    assert report.advanced == []
    assert vehicles["A"] is v


@pytest.mark.asyncio
async def test_non_en_route_vehicles_are_read_only(fake_resolver, fake_time):
    vehicles = await _vehicles(
        fake_resolver, fake_time,
        make_input("IDLE", status="PLANNED"),
        make_input("DONE", status="COMPLETED"),
    )
    before = dict(vehicles)
    clock = SimulationClock(vehicles, now=fake_time)
    fake_time.advance(30)
    await clock.tick()
    assert vehicles == before


@pytest.mark.asyncio
async def test_zero_delta_is_skipped(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"))
    assert advance_vehicle(vehicles["A"], fake_time(), SPEED) is None


@pytest.mark.asyncio
async def test_failure_isolated_to_one_vehicle(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("GOOD"), make_input("BAD"))
    vehicles["BAD"] = vehicles["BAD"].model_copy(update={"route": None})
    clock = SimulationClock(vehicles, average_speed_mps=SPEED, now=fake_time)

    fake_time.advance(5)
    report = await clock.tick()
    assert report.failed == ["BAD"]
    assert vehicles["BAD"].status is VehicleStatus.ERROR
    assert vehicles["BAD"].route is None
    assert vehicles["BAD"].route_distance == 0
    assert vehicles["GOOD"].status is VehicleStatus.EN_ROUTE
    assert vehicles["GOOD"].traveled_distance > 0


@pytest.mark.asyncio
async def test_geodesic_failure_clears_route(fake_resolver, fake_time, monkeypatch):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"))
    clock = SimulationClock(vehicles, average_speed_mps=SPEED, now=fake_time)

    def broken(*args, **kwargs):
        raise ArithmeticError("bad segment")

    monkeypatch.setattr(geo, "point_along", broken)
    fake_time.advance(5)
    report = await clock.tick()

    bad = vehicles["A"]
    assert report.failed == ["A"]
    assert bad.status is VehicleStatus.ERROR
    assert bad.route is None
    assert bad.route_distance == 0
    assert bad.traveled_distance == 0


@pytest.mark.asyncio
async def test_hook_receives_updated_vehicles(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"), make_input("B", status="PLANNED"))
    seen = []

    async def hook(updated):
        seen.extend(v.shipment_id for v in updated)

    clock = SimulationClock(vehicles, average_speed_mps=SPEED, now=fake_time, on_tick=hook)
    fake_time.advance(1)
    await clock.tick()
    assert seen == ["A"]


@pytest.mark.asyncio
async def test_enqueues_sync_payload(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"))
    sync = TickSyncQueue(url="http://backend.test/simulation/tick")
    sent = []
    sync.enqueue = lambda payload: sent.append(payload) or True

    clock = SimulationClock(vehicles, average_speed_mps=SPEED, speed_multiplier=2, now=fake_time, sync=sync)
    fake_time.advance(4)
    await clock.tick()

    assert len(sent) == 1
    assert sent[0].shipment_id == "A"
    assert sent[0].time_delta == pytest.approx(4)
    assert sent[0].speed_multiplier == 2
    assert sent[0].model_dump(by_alias=True)["timeDelta"] == pytest.approx(4)


@pytest.mark.asyncio
async def test_loop_self_stops_when_nothing_en_route(fake_resolver):
    factory = VehicleStateFactory(fake_resolver)
    v = await factory.create(make_input("A"))
    vehicles = {"A": v}
    clock = SimulationClock(vehicles, interval_s=0.01, speed_multiplier=500, average_speed_mps=1_000_000)

    assert clock.start()
    for _ in range(200):
        if not clock.is_running:
            break
        await asyncio.sleep(0.01)
    assert not clock.is_running
    assert vehicles["A"].status is VehicleStatus.PENDING_DELIVERY_CONFIRMATION


@pytest.mark.asyncio
async def test_start_without_en_route_vehicles_is_a_no_op(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A", status="PLANNED"))
    clock = SimulationClock(vehicles, now=fake_time)
    assert clock.start() is False
    assert not clock.is_running
    await clock.stop()


@pytest.mark.asyncio
async def test_clock_halts_after_consecutive_failed_ticks(fake_resolver):
    factory = VehicleStateFactory(fake_resolver)
    vehicles = {}
    for sid in ("A", "BAD"):
        vehicles[sid] = await factory.create(make_input(sid))
    broken = vehicles["BAD"].model_copy(update={"route": None})
    vehicles["BAD"] = broken

    async def reinsert_broken(updated):
        vehicles["BAD"] = broken

    clock = SimulationClock(
        vehicles,
        interval_s=0.01,
        average_speed_mps=1.0,
        on_tick=reinsert_broken,
        max_consecutive_failed_ticks=3,
    )
    clock.start()
    for _ in range(200):
        if not clock.is_running:
            break
        await asyncio.sleep(0.01)
    assert clock.halted
    assert not clock.is_running


@pytest.mark.asyncio
async def test_hook_failures_do_not_halt_the_clock(fake_resolver, fake_time):
    vehicles = await _vehicles(fake_resolver, fake_time, make_input("A"))

    async def broken_hook(updated):
        raise RuntimeError("store down")

    clock = SimulationClock(
        vehicles,
        average_speed_mps=1.0,
        now=fake_time,
        on_tick=broken_hook,
        max_consecutive_failed_ticks=3,
    )
    for _ in range(5):
        fake_time.advance(1)
        report = await clock.tick()
        assert report.failed == []
    assert clock.hook_failures == 5
    assert clock._failed_streak == 0
    assert vehicles["A"].traveled_distance == pytest.approx(5.0)
