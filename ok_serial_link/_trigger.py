"""When incoming data gets read, and how break pulses are timed"""

import typing

import pydantic


class EdgeTrigger(pydantic.BaseModel, frozen=True):
    """Read as soon as the transport reports new bytes"""

    mode: typing.Literal["edge"] = "edge"


class IntervalTrigger(pydantic.BaseModel, frozen=True):
    """Read on a fixed clock, reporting empty ticks too"""

    mode: typing.Literal["interval"] = "interval"
    period_ms: pydantic.PositiveFloat

    @classmethod
    def from_hz(cls, hz: float | int) -> "IntervalTrigger":
        if hz <= 0:
            raise ValueError(f"Sample frequency must be positive, not {hz}")
        return cls(period_ms=1000.0 / hz)

    @property
    def period(self) -> float:
        return self.period_ms / 1000.0


SampleTrigger = typing.Annotated[
    EdgeTrigger | IntervalTrigger, pydantic.Field(discriminator="mode")
]


class BreakTiming(pydantic.BaseModel, frozen=True):
    """Break pulse after a write: wait settle_ms, assert, hold for hold_ms"""

    settle_ms: pydantic.NonNegativeFloat = 10.0
    hold_ms: pydantic.NonNegativeFloat = 1.0
