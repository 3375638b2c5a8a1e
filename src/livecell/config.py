"""Runtime configuration.

RuntimeConfig is frozen after creation and shared by every cell of a Runtime.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Configuration for a livecell Runtime.

    Attributes:
        strict_static: Raise FrozenMutationError when a listener is attached
            to a STATIC cell. When False the attempt is logged as a warning
            and ignored.
        max_cascade: Maximum number of listener calls one dispatch driver may
            run before raising CascadeLimitError. None disables the limit.

    """

    strict_static: bool = True
    max_cascade: int | None = 1_000_000

    def __post_init__(self) -> None:
        if self.max_cascade is not None and self.max_cascade < 1:
            raise ValueError(f"max_cascade must be positive, got {self.max_cascade}")
