from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    yaml = None

from bytetunnel.relay.window import Trigger

logger = logging.getLogger("bytetunnel.config")

DEFAULT_LISTEN_PORT = 1234
DEFAULT_UPSTREAM_HOST = "localhost"
DEFAULT_UPSTREAM_PORT = 27017
DEFAULT_CAPTURE_TEMPLATE = "session{session}_{direction}.bin"

DIRECTIONS = ("client_to_upstream", "upstream_to_client")

# WebDAV clients that drop the leading slash of the request path
TRIGGER_PRESETS: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "webdav": (
        ("\nPROPFIND ", "/"),
        ("\nREPORT ", "/"),
    ),
}


@dataclass(slots=True)
class TriggerConfig:
    """One (sequence, continuation) pair as written in a config file."""

    sequence: str
    continuation: str | int = "/"

    def to_trigger(self) -> Trigger:
        return Trigger.from_text(self.sequence, self.continuation)


@dataclass(slots=True)
class CaptureConfig:
    """Where to tee each direction's bytes."""

    directory: Optional[Path] = None
    template: str = DEFAULT_CAPTURE_TEMPLATE
    directions: Tuple[str, ...] = DIRECTIONS

    @property
    def enabled(self) -> bool:
        return self.directory is not None and bool(self.directions)

    def validate(self) -> None:
        try:
            self.template.format(session=0, direction=DIRECTIONS[0])
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(
                f"Invalid capture template {self.template!r}: only {{session}} and {{direction}} are allowed"
            ) from e

    def path_for(self, session_id: int, direction: str) -> Path:
        if self.directory is None:
            raise ValueError("Capture directory not configured")
        name = self.template.format(session=session_id, direction=direction)
        return Path(self.directory) / name


@dataclass(slots=True)
class TunnelConfig:
    """Top-level configuration for the tunnel."""

    listen_host: str = "0.0.0.0"
    listen_port: int = DEFAULT_LISTEN_PORT
    upstream_host: str = DEFAULT_UPSTREAM_HOST
    upstream_port: int = DEFAULT_UPSTREAM_PORT
    connect_timeout: Optional[float] = 10.0
    read_size: int = 4096
    # Direction name -> triggers applied on that direction
    triggers: Dict[str, List[TriggerConfig]] = field(default_factory=dict)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    # Directions whose bytes are echoed to the console
    echo: Tuple[str, ...] = ()

    def validate(self) -> None:
        for label, port in (("listen", self.listen_port), ("upstream", self.upstream_port)):
            if not 0 <= port <= 65535:
                raise ValueError(f"Invalid {label} port: {port}")
        if not self.upstream_host:
            raise ValueError("Upstream host must be set")
        if self.read_size < 1:
            raise ValueError(f"read_size must be >= 1, got {self.read_size}")
        for direction in (*self.triggers.keys(), *self.echo, *self.capture.directions):
            if direction not in DIRECTIONS:
                raise ValueError(
                    f"Unknown direction {direction!r} (expected one of {', '.join(DIRECTIONS)})"
                )
        for items in self.triggers.values():
            for item in items:
                item.to_trigger()
        self.capture.validate()

    def triggers_for(self, direction: str) -> List[Trigger]:
        return [item.to_trigger() for item in self.triggers.get(direction, [])]

    def enable_preset(self, preset: str, direction: str) -> None:
        """Append a named trigger preset to ``direction``."""
        try:
            pairs = TRIGGER_PRESETS[preset]
        except KeyError:
            raise ValueError(
                f"Unknown trigger preset {preset!r} (available: {', '.join(TRIGGER_PRESETS)})"
            ) from None
        target = self.triggers.setdefault(direction, [])
        target.extend(TriggerConfig(seq, cont) for seq, cont in pairs)


def expand_directions(value: str) -> Tuple[str, ...]:
    """Map a CLI direction selector (none/client/upstream/both) to names.

    ``client`` means bytes sent by the client, i.e. client_to_upstream.
    """
    value = value.strip().lower()
    mapping = {
        "none": (),
        "client": ("client_to_upstream",),
        "upstream": ("upstream_to_client",),
        "both": DIRECTIONS,
    }
    if value in DIRECTIONS:
        return (value,)
    if value not in mapping:
        raise ValueError(f"Invalid direction selector: {value!r}")
    return mapping[value]


def _to_trigger_config(data: Any) -> TriggerConfig:
    if isinstance(data, str):
        return TriggerConfig(sequence=data)
    if isinstance(data, dict):
        return TriggerConfig(
            sequence=data["sequence"],
            continuation=data.get("continuation", "/"),
        )
    if isinstance(data, (list, tuple)) and len(data) == 2:
        return TriggerConfig(sequence=data[0], continuation=data[1])
    raise ValueError(f"Cannot parse trigger entry: {data!r}")


def load_config(path: str | Path) -> TunnelConfig:
    """Parse a YAML/JSON config file into a structured config object."""

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in {".yaml", ".yml"}:
        if yaml is None:
            raise RuntimeError("PyYAML is required to load YAML configs")
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)

    if not isinstance(raw, dict):
        raise ValueError("Configuration must be an object/dict")

    listen = raw.get("listen", {}) or {}
    upstream = raw.get("upstream", {}) or {}

    cfg = TunnelConfig(
        listen_host=str(listen.get("host", "0.0.0.0")),
        listen_port=int(listen.get("port", DEFAULT_LISTEN_PORT)),
        upstream_host=str(upstream.get("host", DEFAULT_UPSTREAM_HOST)),
        upstream_port=int(upstream.get("port", DEFAULT_UPSTREAM_PORT)),
        connect_timeout=upstream.get("connect_timeout", 10.0),
        read_size=int(raw.get("read_size", 4096)),
        echo=tuple(raw.get("echo", []) or []),
    )

    for direction, entries in (raw.get("triggers", {}) or {}).items():
        cfg.triggers[direction] = [_to_trigger_config(e) for e in entries or []]

    for direction, presets in (raw.get("presets", {}) or {}).items():
        if isinstance(presets, str):
            presets = [presets]
        for preset in presets:
            cfg.enable_preset(preset, direction)

    capture_cfg = raw.get("capture")
    if capture_cfg:
        cfg.capture = CaptureConfig(
            directory=Path(capture_cfg["directory"]) if capture_cfg.get("directory") else None,
            template=capture_cfg.get("template", DEFAULT_CAPTURE_TEMPLATE),
            directions=tuple(capture_cfg.get("directions", DIRECTIONS)),
        )

    cfg.validate()
    logger.debug("Loaded config from %s", file_path)
    return cfg
