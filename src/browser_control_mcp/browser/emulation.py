"""
Network, CPU and geolocation emulation.

Each setting is applied on its own and reported on its own line; a failure
in one setting does not prevent the others from being applied.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Final

from ..utils.logging_config import get_logger
from .errors import InvalidArgumentError
from .surface import BrowserSurface

logger = get_logger(__name__)

NO_EMULATION = "No emulation"
OFFLINE = "Offline"

# name -> (download bytes/s, upload bytes/s, latency ms)
NETWORK_PRESETS: dict[str, tuple[float, float, int]] = {
    "Slow 3G": (500 * 1024 / 8, 500 * 1024 / 8, 400),
    "Fast 3G": (1.6 * 1024 * 1024 / 8, 750 * 1024 / 8, 150),
    "Regular 4G": (4 * 1024 * 1024 / 8, 3 * 1024 * 1024 / 8, 20),
    "DSL": (2 * 1024 * 1024 / 8, 1 * 1024 * 1024 / 8, 5),
    "WiFi": (30 * 1024 * 1024 / 8, 15 * 1024 * 1024 / 8, 2),
}

THROTTLING_OPTIONS = (NO_EMULATION, OFFLINE, *NETWORK_PRESETS)

MIN_CPU_RATE = 1
MAX_CPU_RATE = 20
GEOLOCATION_ACCURACY = 100


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset()


@dataclass(frozen=True)
class Geolocation:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise InvalidArgumentError(f"Latitude must be between -90 and 90, got {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise InvalidArgumentError(f"Longitude must be between -180 and 180, got {self.longitude}")


@dataclass(frozen=True)
class EmulationSettings:
    """What is currently emulated in a view"""

    network: str = NO_EMULATION
    cpu_rate: float = 1
    geolocation: Geolocation | None = None


@dataclass
class EmulationResult:
    applied: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied or self.errors)


def network_conditions(preset: str) -> dict[str, Any]:
    """Network.emulateNetworkConditions parameters for a preset name"""
    if preset == NO_EMULATION:
        return {"offline": False, "latency": 0, "downloadThroughput": -1, "uploadThroughput": -1}
    if preset == OFFLINE:
        return {"offline": True, "latency": 0, "downloadThroughput": 0, "uploadThroughput": 0}
    if preset not in NETWORK_PRESETS:
        raise InvalidArgumentError(
            f"Unknown network condition: {preset}. Valid options: {', '.join(THROTTLING_OPTIONS)}"
        )
    download, upload, latency = NETWORK_PRESETS[preset]
    return {
        "offline": False,
        "latency": latency,
        "downloadThroughput": download,
        "uploadThroughput": upload,
    }


class EmulationController:
    def __init__(self) -> None:
        self._settings: dict[str, EmulationSettings] = {}

    def current(self, view_id: str) -> EmulationSettings:
        return self._settings.get(view_id, EmulationSettings())

    def forget(self, view_id: str) -> None:
        self._settings.pop(view_id, None)

    async def emulate(
        self,
        view_id: str,
        surface: BrowserSurface,
        network: str | None = None,
        cpu_rate: float | None = None,
        geolocation: Geolocation | None | _Unset = UNSET,
    ) -> EmulationResult:
        """
        Apply the given settings; None / UNSET leaves a setting untouched.

        Passing geolocation=None clears the geolocation override.
        """
        result = EmulationResult()
        settings = self.current(view_id)

        if network is not None:
            try:
                await surface.send_command("Network.emulateNetworkConditions", network_conditions(network))
                settings = replace(settings, network=network)
                result.applied.append(f"Network: {network}")
            except Exception as e:
                logger.warning(f"Network emulation failed in {view_id}: {e}")
                result.errors.append(f"Network: {e}")

        if cpu_rate is not None:
            try:
                if not MIN_CPU_RATE <= cpu_rate <= MAX_CPU_RATE:
                    raise InvalidArgumentError(
                        f"CPU throttling rate must be between {MIN_CPU_RATE} and {MAX_CPU_RATE}, got {cpu_rate}"
                    )
                await surface.send_command("Emulation.setCPUThrottlingRate", {"rate": cpu_rate})
                settings = replace(settings, cpu_rate=cpu_rate)
                result.applied.append(f"CPU throttling: {cpu_rate:g}x")
            except Exception as e:
                logger.warning(f"CPU throttling failed in {view_id}: {e}")
                result.errors.append(f"CPU throttling: {e}")

        if not isinstance(geolocation, _Unset):
            try:
                if geolocation is None:
                    await surface.send_command("Emulation.clearGeolocationOverride")
                    result.applied.append("Geolocation: cleared")
                else:
                    await surface.send_command(
                        "Emulation.setGeolocationOverride",
                        {
                            "latitude": geolocation.latitude,
                            "longitude": geolocation.longitude,
                            "accuracy": GEOLOCATION_ACCURACY,
                        },
                    )
                    result.applied.append(f"Geolocation: {geolocation.latitude}, {geolocation.longitude}")
                settings = replace(settings, geolocation=geolocation)
            except Exception as e:
                logger.warning(f"Geolocation override failed in {view_id}: {e}")
                result.errors.append(f"Geolocation: {e}")

        self._settings[view_id] = settings
        return result
