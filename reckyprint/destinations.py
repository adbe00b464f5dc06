"""Per-printer resolution of post-print cut and beep settings."""

from dataclasses import dataclass
from enum import Enum

from reckyprint.config import AgentConfig, FeatureConfig, FeatureSettings


class Feature(str, Enum):
    """Post-print signal kinds."""

    CUT = "cut"
    BEEP = "beep"


# Used when neither the printer override nor the global default sets a field.
FALLBACKS = {
    Feature.CUT: FeatureSettings(enabled=False, mode="partial", feed_lines=3, delay_ms=1000),
    Feature.BEEP: FeatureSettings(enabled=False, count=3, duration=5, delay_ms=500),
}


@dataclass(frozen=True)
class EffectiveCut:
    enabled: bool
    mode: str
    feed_lines: int
    delay_ms: int


@dataclass(frozen=True)
class EffectiveBeep:
    enabled: bool
    count: int
    duration: int
    delay_ms: int


EffectiveConfig = EffectiveCut | EffectiveBeep


class DestinationConfigResolver:
    """Merge printer overrides, global defaults and fallbacks.

    For every field the printer override wins if it sets the field, then
    the global default, then the hard-coded fallback. A missing or blank
    destination never matches an override.
    """

    def __init__(self, cut: FeatureConfig, beep: FeatureConfig):
        self._features = {Feature.CUT: cut, Feature.BEEP: beep}

    @classmethod
    def from_config(cls, config: AgentConfig) -> "DestinationConfigResolver":
        return cls(config.cut, config.beep)

    def resolve(self, feature: Feature | str, destination: str | None) -> EffectiveConfig:
        """Compute the effective settings of a feature for a printer.

        Args:
            feature: 'cut' or 'beep'.
            destination: Printer name the job was sent to.

        Returns:
            EffectiveCut | EffectiveBeep: Fully populated settings.
        """
        feature = Feature(feature)
        config = self._features[feature]
        override = None
        if destination and destination.strip():
            override = config.per_printer.get(destination)

        def pick(name: str):
            for level in (override, config.defaults, FALLBACKS[feature]):
                if level is not None and getattr(level, name) is not None:
                    return getattr(level, name)
            return None

        if feature is Feature.CUT:
            return EffectiveCut(
                enabled=bool(pick("enabled")),
                mode=pick("mode"),
                feed_lines=int(pick("feed_lines")),
                delay_ms=int(pick("delay_ms")),
            )
        return EffectiveBeep(
            enabled=bool(pick("enabled")),
            count=int(pick("count")),
            duration=int(pick("duration")),
            delay_ms=int(pick("delay_ms")),
        )

    def resolve_cut(self, destination: str | None) -> EffectiveCut:
        return self.resolve(Feature.CUT, destination)

    def resolve_beep(self, destination: str | None) -> EffectiveBeep:
        return self.resolve(Feature.BEEP, destination)
