"""Static configuration of a simulation run."""

from dataclasses import dataclass, field, fields
from typing import Literal, Optional

import numpy as np

from .errors import SettingsInvalid


@dataclass
class ObservationSettings:
    """Frequency channels and time samples to simulate."""

    start_frequency_hz: float = 100e6
    frequency_inc_hz: float = 0.0
    num_channels: int = 1
    channel_bandwidth_hz: float = 0.0
    start_mjd_utc: float = 59000.0
    num_time_steps: int = 1
    dt_dump_days: float = 10.0 / 86400.0

    def validate(self):
        if self.num_channels < 1:
            raise SettingsInvalid("num_channels must be at least 1")
        if self.num_time_steps < 1:
            raise SettingsInvalid("num_time_steps must be at least 1")
        if self.start_frequency_hz <= 0:
            raise SettingsInvalid("start_frequency_hz must be positive")
        if self.start_frequency_hz + (self.num_channels - 1) * self.frequency_inc_hz <= 0:
            raise SettingsInvalid("all channel frequencies must be positive")
        if self.channel_bandwidth_hz < 0:
            raise SettingsInvalid("channel_bandwidth_hz cannot be negative")
        if self.dt_dump_days < 0:
            raise SettingsInvalid("dt_dump_days cannot be negative")

    def frequencies(self) -> np.ndarray:
        """Centre frequency of every channel, in Hz."""
        return self.start_frequency_hz + self.frequency_inc_hz * np.arange(
            self.num_channels, dtype=np.float64
        )

    def times_mjd(self) -> np.ndarray:
        """Centre of every time sample, as MJD (UTC)."""
        return self.start_mjd_utc + self.dt_dump_days * (
            np.arange(self.num_time_steps, dtype=np.float64) + 0.5
        )


@dataclass
class NoiseSettings:
    """Uncorrelated system noise added after all channels are folded."""

    enabled: bool = False
    seed: int = 1


@dataclass
class SkyFilterSettings:
    """Flux limits applied to the catalogue before chunking."""

    flux_min: Optional[float] = None
    flux_max: Optional[float] = None

    def validate(self):
        if (
            self.flux_min is not None
            and self.flux_max is not None
            and self.flux_min > self.flux_max
        ):
            raise SettingsInvalid("sky_filter.flux_min is larger than flux_max")


@dataclass
class SimulationSettings:
    """Settings for a complete interferometer simulation.

    Parameters
    ----------
    num_devices : int
        Number of worker lanes, one compute device each.
    device_ids : list of int, optional
        Device index bound to each lane. Defaults to ``0 .. num_devices - 1``.
    backend : str
        Either "cpu" or "gpu".
    max_sources_per_chunk : int
        Largest number of sources processed as one unit of work.
    precision : int
        1 for float32/complex64, 2 for float64/complex128.
    polarized : bool
        Whether to simulate 2x2 visibility matrices instead of scalars.
    dynamic_scheduling : bool
        Hand chunks to whichever lane is free next. If False, lane k always
        processes chunks k, k + n, ... which makes runs bit-reproducible.
    require_output : bool
        Whether a run without any output writer is rejected.
    """

    num_devices: int = 1
    device_ids: Optional[list] = None
    backend: Literal["cpu", "gpu"] = "cpu"
    max_sources_per_chunk: int = 10000
    precision: int = 2
    polarized: bool = False
    dynamic_scheduling: bool = True
    require_output: bool = True
    observation: ObservationSettings = field(default_factory=ObservationSettings)
    noise: NoiseSettings = field(default_factory=NoiseSettings)
    sky_filter: SkyFilterSettings = field(default_factory=SkyFilterSettings)

    def validate(self):
        """Check the settings for consistency, raising :class:`SettingsInvalid`."""
        if self.num_devices < 1:
            raise SettingsInvalid("num_devices must be at least 1")
        if self.device_ids is not None:
            if len(self.device_ids) < self.num_devices:
                raise SettingsInvalid(
                    f"{self.num_devices} devices requested but only "
                    f"{len(self.device_ids)} device ids given"
                )
            if len(set(self.device_ids[: self.num_devices])) != self.num_devices:
                raise SettingsInvalid("device_ids must not repeat a device")
        if self.backend not in ("cpu", "gpu"):
            raise SettingsInvalid(f"Unsupported backend: {self.backend}")
        if self.max_sources_per_chunk < 1:
            raise SettingsInvalid("max_sources_per_chunk must be at least 1")
        if self.precision not in (1, 2):
            raise SettingsInvalid(f"Invalid precision: {self.precision}")
        self.observation.validate()
        self.sky_filter.validate()

    @property
    def real_dtype(self):
        return np.float32 if self.precision == 1 else np.float64

    @property
    def complex_dtype(self):
        return np.complex64 if self.precision == 1 else np.complex128

    @classmethod
    def from_dict(cls, values: dict) -> "SimulationSettings":
        """Build settings from a (possibly nested) plain mapping."""
        nested = {
            "observation": ObservationSettings,
            "noise": NoiseSettings,
            "sky_filter": SkyFilterSettings,
        }
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            if key not in known:
                raise SettingsInvalid(f"Unknown setting: {key}")
            if key in nested and isinstance(value, dict):
                sub = nested[key]
                sub_known = {f.name for f in fields(sub)}
                unknown = set(value) - sub_known
                if unknown:
                    raise SettingsInvalid(
                        f"Unknown {key} setting(s): {', '.join(sorted(unknown))}"
                    )
                value = sub(**value)
            kwargs[key] = value
        return cls(**kwargs)
