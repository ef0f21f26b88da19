"""Tests for port-forward de-duplication"""

import json
import os
import signal
import subprocess
import sys

import pytest

from kubeboot.config import ForwardSpec
from kubeboot.installer.kubectl import Kubectl
from kubeboot.installer.portforward import (
    ForwardManager,
    ForwardRecord,
    ForwardRegistry,
    is_relay_command,
    pid_alive,
    process_command,
    relay_running,
    stop_forward,
)

GRAFANA = ForwardSpec("Grafana", "grafana", "monitoring", 3000, 80)


@pytest.fixture
def registry(tools, tmp_path):
    return ForwardRegistry(tmp_path / "state", is_running=tools.is_relay)


@pytest.fixture
def manager(tools, clock, registry):
    tools.services.add(("monitoring", "grafana"))
    kubectl = Kubectl(run=tools.run, clock=clock, sleep=clock.sleep)
    return ForwardManager(kubectl, registry, spawn=tools.spawn, port_check=lambda port: False)


def test_same_forward_twice_starts_one_relay(tools, manager):
    first = manager.ensure(GRAFANA)
    second = manager.ensure(GRAFANA)

    assert first.started is True
    assert second.started is False
    assert second.pid == first.pid
    assert tools.spawned == [["kubectl", "port-forward", "svc/grafana", "-n", "monitoring", "3000:80"]]


def test_different_local_ports_are_independent(tools, manager):
    manager.ensure(GRAFANA)
    manager.ensure(ForwardSpec("Grafana alt", "grafana", "monitoring", 3300, 80))

    assert len(tools.spawned) == 2


def test_registry_survives_new_manager(tools, manager, registry, clock):
    manager.ensure(GRAFANA)

    again = ForwardManager(
        Kubectl(run=tools.run, clock=clock, sleep=clock.sleep), registry, spawn=tools.spawn, port_check=lambda p: False
    )
    assert again.ensure(GRAFANA).started is False
    assert len(tools.spawned) == 1


def test_dead_relay_is_restarted(tools, manager):
    first = manager.ensure(GRAFANA)
    tools.alive.discard(first.pid)

    second = manager.ensure(GRAFANA)

    assert second.started is True
    assert second.pid != first.pid


def test_missing_service_is_soft_failure(tools, registry, clock):
    kubectl = Kubectl(run=tools.run, clock=clock, sleep=clock.sleep)
    manager = ForwardManager(
        kubectl, registry, spawn=tools.spawn, port_check=lambda p: False, service_timeout=10, poll_interval=5
    )

    result = manager.ensure(ForwardSpec("spam", "spam2000", "spam2000", 3001, 3000))

    assert result.started is True
    assert clock.now == 10


def test_corrupted_registry_starts_fresh(registry):
    registry.path.parent.mkdir(parents=True)
    registry.path.write_text("{not json")

    assert registry.load() == {}


def test_registry_file_format(manager, registry):
    manager.ensure(GRAFANA)

    data = json.loads(registry.path.read_text())
    assert data[GRAFANA.key]["local_port"] == 3000
    assert data[GRAFANA.key]["url"] == "http://localhost:3000"


def test_stop_forward(manager, registry):
    result = manager.ensure(GRAFANA)
    killed = []

    assert stop_forward(registry, GRAFANA.key, kill=lambda pid, sig: killed.append((pid, sig))) is True
    assert killed == [(result.pid, signal.SIGTERM)]
    assert registry.load() == {}
    assert stop_forward(registry, GRAFANA.key, kill=lambda pid, sig: None) is False


def test_pid_alive_for_current_process():
    assert pid_alive(os.getpid()) is True
    assert pid_alive(0) is False


@pytest.mark.parametrize("content", ["[]", "null", '"forwards"', "42"])
def test_non_object_registry_starts_fresh(registry, content):
    registry.path.parent.mkdir(parents=True)
    registry.path.write_text(content)

    assert registry.load() == {}


def test_non_object_entry_is_skipped(registry):
    registry.path.parent.mkdir(parents=True)
    registry.path.write_text(json.dumps({"monitoring/grafana:3000:80": ["not", "a", "record"]}))

    assert registry.load() == {}


def grafana_record(pid):
    return ForwardRecord(
        key=GRAFANA.key,
        name=GRAFANA.name,
        service=GRAFANA.service,
        namespace=GRAFANA.namespace,
        local_port=GRAFANA.local_port,
        remote_port=GRAFANA.remote_port,
        pid=pid,
        url=GRAFANA.url,
    )


@pytest.fixture
def sleeper():
    """A live process unrelated to any port-forward"""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    yield proc
    proc.kill()
    proc.wait()


@pytest.fixture
def fake_relay():
    """A live process whose command line looks like the grafana relay"""
    proc = subprocess.Popen(
        [
            sys.executable,
            "-c",
            "import time; time.sleep(60)",
            "port-forward",
            "svc/grafana",
            "-n",
            "monitoring",
            "3000:80",
        ]
    )
    yield proc
    proc.kill()
    proc.wait()


def test_is_relay_command():
    record = grafana_record(1)

    assert is_relay_command(["kubectl", "port-forward", "svc/grafana", "-n", "monitoring", "3000:80"], record)
    assert not is_relay_command(["kubectl", "port-forward", "svc/grafana", "-n", "monitoring", "3300:80"], record)
    assert not is_relay_command(["python", "-c", "import time; time.sleep(60)"], record)


def test_process_command_reads_live_process(fake_relay):
    argv = process_command(fake_relay.pid)

    assert argv is not None
    assert argv[-4:] == ["svc/grafana", "-n", "monitoring", "3000:80"]


def test_relay_running_matches_command_line(fake_relay, sleeper):
    assert relay_running(grafana_record(fake_relay.pid)) is True
    assert relay_running(grafana_record(sleeper.pid)) is False


def test_reused_pid_is_not_treated_as_relay(tools, clock, tmp_path, sleeper):
    registry = ForwardRegistry(tmp_path / "state")
    registry.add(grafana_record(sleeper.pid))
    tools.services.add(("monitoring", "grafana"))
    manager = ForwardManager(
        Kubectl(run=tools.run, clock=clock, sleep=clock.sleep), registry, spawn=tools.spawn, port_check=lambda p: False
    )

    result = manager.ensure(GRAFANA)

    assert result.started is True
    assert result.pid != sleeper.pid
    assert len(tools.spawned) == 1


def test_stop_never_signals_unrelated_process(tmp_path, sleeper):
    registry = ForwardRegistry(tmp_path / "state")
    registry.add(grafana_record(sleeper.pid))

    assert stop_forward(registry, GRAFANA.key) is False
    assert sleeper.poll() is None
    assert registry.load() == {}


def test_stop_signals_matching_relay(tmp_path, fake_relay):
    registry = ForwardRegistry(tmp_path / "state")
    registry.add(grafana_record(fake_relay.pid))

    assert stop_forward(registry, GRAFANA.key) is True
    assert fake_relay.wait(timeout=10) == -signal.SIGTERM
