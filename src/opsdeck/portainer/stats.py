"""Resource figures computed from a one-shot Docker stats sample."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ContainerStats:
    cpu_percent: float
    memory_usage: int
    memory_limit: int
    memory_percent: float
    network_rx: int
    network_tx: int
    block_read: int
    block_write: int

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def compute_cpu_percent(
    total_usage: int,
    pre_total_usage: int,
    system_usage: int,
    pre_system_usage: int,
    online_cpus: int,
) -> float:
    cpu_delta = total_usage - pre_total_usage
    system_delta = system_usage - pre_system_usage
    if system_delta <= 0 or cpu_delta <= 0:
        return 0.0
    return cpu_delta / system_delta * max(online_cpus, 1) * 100.0


def compute_stats(raw: dict[str, Any]) -> ContainerStats:
    cpu = raw.get("cpu_stats") or {}
    precpu = raw.get("precpu_stats") or {}
    cpu_usage = cpu.get("cpu_usage") or {}
    online_cpus = _int(cpu.get("online_cpus")) or len(cpu_usage.get("percpu_usage") or []) or 1
    cpu_percent = compute_cpu_percent(
        _int(cpu_usage.get("total_usage")),
        _int((precpu.get("cpu_usage") or {}).get("total_usage")),
        _int(cpu.get("system_cpu_usage")),
        _int(precpu.get("system_cpu_usage")),
        online_cpus,
    )

    memory = raw.get("memory_stats") or {}
    memory_usage = _int(memory.get("usage"))
    memory_limit = _int(memory.get("limit"))
    memory_percent = memory_usage / memory_limit * 100.0 if memory_limit > 0 else 0.0

    network_rx = 0
    network_tx = 0
    for interface in (raw.get("networks") or {}).values():
        network_rx += _int(interface.get("rx_bytes"))
        network_tx += _int(interface.get("tx_bytes"))

    block_read = 0
    block_write = 0
    for entry in (raw.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []:
        op = str(entry.get("op", "")).lower()
        if op == "read":
            block_read += _int(entry.get("value"))
        elif op == "write":
            block_write += _int(entry.get("value"))

    return ContainerStats(
        cpu_percent=round(cpu_percent, 2),
        memory_usage=memory_usage,
        memory_limit=memory_limit,
        memory_percent=round(memory_percent, 2),
        network_rx=network_rx,
        network_tx=network_tx,
        block_read=block_read,
        block_write=block_write,
    )
