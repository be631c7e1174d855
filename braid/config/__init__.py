"""Configuration system: turning YAML into validated Python objects.

Branch kinds and merge layers are described by Pydantic models. Each config
carries a `type` tag, which doubles as the kind tag in saved checkpoints,
so a config is both how a branch is declared and how it is rebuilt.
"""
from __future__ import annotations

import enum
import importlib
from typing import TYPE_CHECKING, Annotated, Protocol, TypeVar, cast

from pydantic import AfterValidator, BaseModel

if TYPE_CHECKING:
    from braid.layer import Branch


T = TypeVar("T")


class ValidationType(enum.Enum):
    """Types of value validation we support."""

    SHOULD_BE_POSITIVE = "should_be_positive"
    SHOULD_BE_NON_NEGATIVE = "should_be_non_negative"


class Config(BaseModel):
    """Base class for all configuration objects.

    Provides a `build()` method that dynamically constructs the branch
    corresponding to this config, and validation helpers for enforcing
    constraints on config values.
    """

    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)

    def build(self) -> "Branch":
        """Construct the branch this config describes.

        Uses dynamic imports based on the config's `type` field, so adding
        a new branch kind only requires adding the module, no central registry.
        """

        class _BuildType(Protocol):
            value: str
            name: str

            def module_name(self) -> str:
                ...

        t = cast(_BuildType, getattr(self, "type"))
        class_name = t.value
        module_name = t.name.lower()
        mod = importlib.import_module(f"{t.module_name()}.{module_name}")
        cls = getattr(mod, class_name)
        return cls.from_config(self)

    @staticmethod
    def check(left: T, validation_type: ValidationType) -> T:
        """Validate a value against a constraint, raising ValueError on failure."""
        match validation_type:
            case ValidationType.SHOULD_BE_POSITIVE:
                if left <= 0:  # type: ignore[operator]
                    raise ValueError(
                        f"Validation failed: {validation_type.name}: {left!r} <= 0"
                    )
                return left
            case ValidationType.SHOULD_BE_NON_NEGATIVE:
                if left < 0:  # type: ignore[operator]
                    raise ValueError(
                        f"Validation failed: {validation_type.name}: {left!r} < 0"
                    )
                return left
            case _:
                raise ValueError(
                    f"Validation failed: unknown validation type {validation_type}"
                )


# Type aliases for validated primitives, use these in config models
PositiveInt = Annotated[
    int,
    AfterValidator(lambda v: Config.check(v, ValidationType.SHOULD_BE_POSITIVE)),
]
NonNegativeInt = Annotated[
    int,
    AfterValidator(lambda v: Config.check(v, ValidationType.SHOULD_BE_NON_NEGATIVE)),
]
