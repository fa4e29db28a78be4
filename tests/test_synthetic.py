"""Tests for printwatch.synthetic -- simulated printers.

Covers:
- spawn(): fixed address, id prefix, dummy job, expiry, cloning
- advance(): progress step, time bookkeeping, post_print -> idle walk
- Expiry independent of job completion (90 s spawn / 180 s lifetime)
- Real printers are never modified
- run_forever spawns on its interval and stops promptly
"""

from __future__ import annotations

import random
import threading
import time

import pytest

from printwatch.models import JobState, PrinterStatus
from printwatch.synthetic import (
    DUMMY_JOB_SECONDS,
    PROGRESS_STEP,
    SYNTHETIC_ID_PREFIX,
    SYNTHETIC_IP,
    SyntheticDeviceGenerator,
)

from helpers import make_record


@pytest.fixture
def generator(registry, clock):
    return SyntheticDeviceGenerator(
        registry,
        spawn_interval=90.0,
        lifetime=180.0,
        tick_seconds=10.0,
        clock=clock,
        rng=random.Random(7),
    )


class TestSpawn:
    def test_spawn_without_real_printers(self, generator, registry, clock):
        record = generator.spawn()
        assert record.id.startswith(SYNTHETIC_ID_PREFIX)
        assert record.ip_address == SYNTHETIC_IP == "192.168.180.134"
        assert record.is_synthetic is True
        assert record.name.startswith("Ultimaker SIM ")
        assert record.model == "Ultimaker-SIM"
        assert record.status is PrinterStatus.PRINTING
        assert record.expires_at == clock.now + 180.0
        assert len(record.nozzles) == 2

        job = record.current_job
        assert job.name.startswith("Dummy Job ")
        assert job.progress_percent == 0
        assert job.state is JobState.PRINTING
        assert job.time_remaining == DUMMY_JOB_SECONDS == 1500.0
        assert registry.get(record.id) is not None

    def test_spawn_clones_first_real_printer(self, generator, registry):
        real = make_record("real", name="UM3-Lab", bed_temperature=60.0)
        real.model = "Ultimaker 3"
        registry.upsert(real)

        record = generator.spawn()

        assert record.name.startswith("UM3-Lab (SIM ")
        assert record.model == "Ultimaker 3"
        assert 58.0 <= record.bed_temperature <= 62.0
        assert record.ip_address == SYNTHETIC_IP
        assert registry.get("real").name == "UM3-Lab"

    def test_spawned_ids_are_unique(self, generator):
        ids = {generator.spawn().id for _ in range(20)}
        assert len(ids) == 20


class TestAdvance:
    def test_progress_step(self, generator, registry, clock):
        record = generator.spawn()
        clock.advance(10)
        generator.advance()

        stepped = registry.get(record.id)
        assert stepped.current_job.progress_percent == PROGRESS_STEP == 3
        assert stepped.current_job.time_elapsed == 10.0
        assert stepped.current_job.time_remaining == pytest.approx(1500.0 * 0.97)
        assert stepped.status is PrinterStatus.PRINTING
        assert stepped.last_seen == clock.now

    def test_temperatures_wiggle_within_one_degree(self, generator, registry):
        record = generator.spawn()
        generator.advance()
        stepped = registry.get(record.id)
        assert abs(stepped.nozzles[0].temperature - record.nozzles[0].temperature) <= 1
        assert abs(stepped.bed_temperature - record.bed_temperature) <= 1

    def test_job_walks_to_post_print_then_idle(self, generator, registry, clock):
        record = generator.spawn()
        # Long lifetime so expiry does not interfere.
        registry.update(record.id, lambda r: setattr(r, "expires_at", clock.now + 10_000))

        for _ in range(33):
            generator.advance()
        assert registry.get(record.id).current_job.progress_percent == 99
        assert registry.get(record.id).current_job.state is JobState.PRINTING

        generator.advance()
        finished = registry.get(record.id)
        assert finished.current_job.progress_percent == 100
        assert finished.current_job.state is JobState.POST_PRINT
        assert finished.current_job.time_remaining == 0.0
        assert finished.status is PrinterStatus.PRINTING

        generator.advance()
        idle = registry.get(record.id)
        assert idle.status is PrinterStatus.IDLE
        assert idle.current_job is None

        generator.advance()
        assert registry.get(record.id).status is PrinterStatus.IDLE

    def test_real_printers_untouched(self, generator, registry):
        real = make_record("real", status=PrinterStatus.IDLE, expires_at=0.0)
        registry.upsert(real)
        generator.spawn()
        for _ in range(5):
            generator.advance()
        assert registry.get("real") == real

    def test_job_present_iff_printing(self, generator, registry):
        record = generator.spawn()
        registry.update(record.id, lambda r: setattr(r, "expires_at", None))
        for _ in range(40):
            generator.advance()
            current = registry.get(record.id)
            assert (current.current_job is not None) == (current.status is PrinterStatus.PRINTING)


class TestExpiry:
    def test_lifetime_scenario(self, generator, registry, clock):
        first = generator.spawn()
        clock.advance(90)
        second = generator.spawn()

        clock.advance(89)
        assert generator.advance() == []
        assert first.id in registry

        clock.advance(1)
        assert generator.advance() == [first.id]
        assert first.id not in registry
        assert second.id in registry

        clock.advance(90)
        assert generator.prune_expired() == [second.id]
        assert len(registry) == 0

    def test_expiry_independent_of_job(self, generator, registry, clock):
        record = generator.spawn()
        clock.advance(180)
        generator.advance()
        assert record.id not in registry


class TestRunForever:
    def test_spawns_until_stopped(self, registry):
        stop = threading.Event()
        generator = SyntheticDeviceGenerator(registry, spawn_interval=0.02, lifetime=60.0, stop_event=stop)
        thread = threading.Thread(target=generator.run_forever, daemon=True)
        thread.start()
        deadline = time.monotonic() + 2.0
        while len(registry) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        stop.set()
        thread.join(timeout=2.0)
        assert not thread.is_alive()
        assert len(registry) >= 2
        assert all(r.is_synthetic for r in registry.snapshot())

    def test_first_spawn_waits_one_interval(self, registry):
        stop = threading.Event()
        generator = SyntheticDeviceGenerator(registry, spawn_interval=60.0, stop_event=stop)
        thread = threading.Thread(target=generator.run_forever, daemon=True)
        thread.start()
        time.sleep(0.05)
        stop.set()
        thread.join(timeout=2.0)
        assert len(registry) == 0
