from __future__ import annotations

import threading

import pytest

import jobs.filing_discovery as discovery
from api.jobs.manager import DiscoveryScanJob, PeriodicSweep
from models.filing_candidates import FilingCandidate
from pytests.common import seed_entity

HTML = (
    "<table><tr><td>07/04/2021</td>"
    '<td><a href="/a.pdf">Bitcoin Purchase Announcement</a></td></tr></table>'
)


def test_discovery_scan_job_runs_in_background(test_db, monkeypatch):
    seed_entity(test_db.session)
    monkeypatch.setattr(discovery, "fetch_search_page", lambda url, **kwargs: HTML)

    job = DiscoveryScanJob()
    assert job.start() is True
    job.join(timeout=10)

    state = job.get_state()
    assert state["running"] is False
    assert state["error"] is None
    assert state["result"]["inserted"] == 1
    assert test_db.session.query(FilingCandidate).count() == 1


def test_discovery_scan_job_single_flight(test_db, monkeypatch):
    gate = threading.Event()

    def _blocking_scan(**kwargs):
        gate.wait(5)
        raise RuntimeError("scan aborted")

    monkeypatch.setattr(discovery, "run_scan", _blocking_scan)

    job = DiscoveryScanJob()
    assert job.start() is True
    assert job.start() is False
    gate.set()
    job.join(timeout=10)

    state = job.get_state()
    assert state["running"] is False
    assert "scan aborted" in state["error"]


def test_periodic_sweep_run_once_survives_failures():
    calls = []

    def _fn():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("transient")
        return 3

    sweep = PeriodicSweep("test", _fn, interval_seconds=60)
    assert sweep.run_once() is None
    assert sweep.run_once() == 3
    assert sweep.get_state() == {"running": False, "interval_seconds": 60.0, "runs": 2}


def test_periodic_sweep_ticks_until_stopped():
    ticked = threading.Event()
    sweep = PeriodicSweep("tick", ticked.set, interval_seconds=0.01)

    assert sweep.start() is True
    assert sweep.start() is False
    assert ticked.wait(2)
    sweep.stop(timeout=2)
    assert sweep.running is False


def test_periodic_sweep_rejects_bad_interval():
    with pytest.raises(ValueError):
        PeriodicSweep("bad", lambda: None, interval_seconds=0)
