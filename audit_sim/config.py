from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

PACKAGE_ROOT = Path(__file__).resolve().parent
DATA_DIR = PACKAGE_ROOT / "data"
BASE_WORKFLOW_PATH = DATA_DIR / "base_workflow.json"
MEASURE_TABLE_PATH = DATA_DIR / "measure_table.json"
BUILDING_TYPES_PATH = DATA_DIR / "building_types.json"

WORKFLOW_FILENAME = "in.osw"
OUT_DESCRIPTOR_FILENAME = "out.osw"
RESULTS_FILENAME = "results.json"
FINISHED_SENTINEL = "finished.job"
FAILED_SENTINEL = "failed.job"
ENGINE_LOGS = ["eplusout.end", "eplusout.err"]
FATAL_MARKERS = ["Fatal Error Detected", "**  Fatal  **"]
SUCCESS_STATUS = "Success"
LARGE_OUTPUT_FILES = ["eplusout.sql", "eplusout.eso", "data_point.zip"]

DEFAULT_ENGINE = os.environ.get("AUDIT_SIM_ENGINE", "openstudio")


@dataclass
class EngineConfig:
    """How the external engine is invoked and how its run directory is read back."""

    command: List[str] = field(default_factory=lambda: [DEFAULT_ENGINE, "run", "-w"])
    timeout: Optional[float] = None
    pool_size: int = 4
    max_concurrent: int = 4
    success_status: str = SUCCESS_STATUS
    finished_sentinel: str = FINISHED_SENTINEL
    failed_sentinel: str = FAILED_SENTINEL
    engine_logs: List[str] = field(default_factory=lambda: list(ENGINE_LOGS))
    fatal_markers: List[str] = field(default_factory=lambda: list(FATAL_MARKERS))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        required = ["command"]
        missing = [key for key in required if key not in data]
        if missing:
            raise ValueError(f"Engine config missing keys: {missing}")
        command = data["command"]
        if isinstance(command, str):
            command = command.split()
        timeout = data.get("timeout")
        config = cls(
            command=[str(part) for part in command],
            timeout=float(timeout) if timeout is not None else None,
            pool_size=max(1, int(data.get("pool_size", 4))),
            max_concurrent=max(1, int(data.get("max_concurrent", 4))),
        )
        for key in ("success_status", "finished_sentinel", "failed_sentinel"):
            if key in data:
                setattr(config, key, str(data[key]))
        for key in ("engine_logs", "fatal_markers"):
            if key in data:
                setattr(config, key, [str(v) for v in data[key]])
        return config

    @property
    def max_workers(self) -> int:
        return min(self.pool_size, self.max_concurrent)


def load_engine_config(path: Optional[Path]) -> EngineConfig:
    if path is None:
        return EngineConfig()
    with path.open("r", encoding="utf-8") as f:
        return EngineConfig.from_dict(json.load(f))
