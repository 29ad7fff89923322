"""Hardware description sent once at worker startup."""
from __future__ import annotations

import logging
import platform
import subprocess
from typing import Optional, Tuple

import psutil

logger = logging.getLogger("friendlai.worker.hardware")


def _gb(n_bytes: float) -> str:
    return f"{n_bytes / 1024 ** 3:.1f} GB"


def get_gpu_info() -> Tuple[Optional[str], Optional[str]]:
    """Name and total memory of the first NVIDIA GPU, if nvidia-smi answers."""
    try:
        result = subprocess.run(
            ["nvidia-smi", "--query-gpu=name,memory.total", "--format=csv,noheader,nounits"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None, None

    if result.returncode != 0 or not result.stdout.strip():
        return None, None

    parts = [p.strip() for p in result.stdout.strip().splitlines()[0].split(",")]
    if len(parts) < 2:
        return parts[0] or None, None
    try:
        return parts[0], f"{float(parts[1]) / 1024:.1f} GB"
    except ValueError:
        return parts[0], None


def describe_hardware() -> dict:
    gpu, gpu_memory = get_gpu_info()
    cpu = platform.processor() or platform.machine()
    cores = psutil.cpu_count(logical=True)
    if cores:
        cpu = f"{cpu} ({cores} threads)"
    return {
        "cpu": cpu,
        "platform": f"{platform.system()} {platform.release()}",
        "memory": _gb(psutil.virtual_memory().total),
        "gpu": gpu,
        "gpu_memory": gpu_memory,
    }
