"""
Load Generation Runtime - Generator Configuration Schemas

Pydantic models describing the persisted / submitted configuration of a
generator. The ``kind`` field selects the policy:

- ``regex_immediate``: {generator_id?, short_name, description?,
  job_name_regex?, concurrent_run_count}
- ``single_job_ramp_up``: {generator_id?, short_name, description?,
  job_name, concurrent_run_count, ramp_up_millis, use_jitter}

Runtime state is never part of the configuration.
"""

from __future__ import annotations

import random
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from loadgen.runtime.errors import (
    ErrorCode,
    configuration_error,
    validation_error,
)
from loadgen.runtime.generators import (
    GENERATOR_KINDS,
    Clock,
    LoadGenerator,
    RegexMatchImmediateGenerator,
    SingleJobLinearRampUpGenerator,
)
from loadgen.runtime.models import is_valid_name


class _GeneratorConfigBase(BaseModel):
    """Fields shared by every generator kind."""

    generator_id: Optional[str] = Field(None, description="Stable generator id (UUID generated if empty)")
    short_name: str = Field(description="Unique human-readable label")
    description: Optional[str] = Field(None, description="Free text")
    concurrent_run_count: int = Field(default=1, ge=0, description="Target concurrent runs")

    @field_validator("generator_id")
    @classmethod
    def validate_generator_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not is_valid_name(v):
            raise ValueError("generator_id contains reserved characters")
        return v.strip()

    @field_validator("short_name")
    @classmethod
    def validate_short_name(cls, v: str) -> str:
        if not is_valid_name(v):
            raise ValueError(
                "short_name must be non-empty and may not contain "
                "?*/\\%!@#$^&|<>[]:;"
            )
        return v.strip()

    class Config:
        extra = "forbid"


class RegexImmediateConfig(_GeneratorConfigBase):
    kind: Literal["regex_immediate"] = "regex_immediate"
    job_name_regex: Optional[str] = Field(None, description="Full-match regex; empty matches all jobs")


class SingleJobRampUpConfig(_GeneratorConfigBase):
    kind: Literal["single_job_ramp_up"] = "single_job_ramp_up"
    job_name: str = Field(min_length=1, description="Exact full name of the job")
    ramp_up_millis: int = Field(default=0, ge=0, description="Ramp-up window in milliseconds")
    use_jitter: bool = Field(default=True, description="Randomize per-tick launch counts")


GeneratorConfig = Annotated[
    Union[RegexImmediateConfig, SingleJobRampUpConfig],
    Field(discriminator="kind"),
]

_config_adapter: TypeAdapter[Any] = TypeAdapter(GeneratorConfig)


def parse_generator_config(data: Mapping[str, Any]) -> Union[RegexImmediateConfig, SingleJobRampUpConfig]:
    """
    Validate a raw mapping into a typed generator configuration.

    Raises:
        ConfigurationError: If ``kind`` is missing or unknown
        ValidationError: If any field is missing or out of range
    """
    kind = data.get("kind")
    if kind not in GENERATOR_KINDS:
        raise configuration_error(
            ErrorCode.CFG_UNKNOWN_KIND,
            f"Unknown generator kind: {kind!r}",
            generator_id=data.get("generator_id"),
            short_name=data.get("short_name"),
            expected=", ".join(sorted(GENERATOR_KINDS)),
            actual=str(kind),
        )

    try:
        return _config_adapter.validate_python(dict(data))
    except PydanticValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"][1:]) or None
        code = ErrorCode.VAL_EMPTY_FIELD if first["type"] == "missing" else ErrorCode.VAL_FIELD_OUT_OF_RANGE
        raise validation_error(
            code,
            f"Invalid generator configuration: {first['msg']}",
            generator_id=data.get("generator_id"),
            short_name=data.get("short_name"),
            field_name=field_name,
            cause=e,
            error_count=e.error_count(),
        )


def generator_from_config(
    config: Union[RegexImmediateConfig, SingleJobRampUpConfig, Mapping[str, Any]],
    clock: Optional[Clock] = None,
    rng: Optional[random.Random] = None,
) -> LoadGenerator:
    """
    Build a policy object from its configuration.

    Args:
        config: Typed config, or a raw mapping to validate first
        clock: Optional millisecond clock (ramp-up policies)
        rng: Optional random source (ramp-up jitter)
    """
    if isinstance(config, Mapping):
        config = parse_generator_config(config)

    if isinstance(config, RegexImmediateConfig):
        return RegexMatchImmediateGenerator(
            job_name_regex=config.job_name_regex,
            concurrent_run_count=config.concurrent_run_count,
            generator_id=config.generator_id,
            short_name=config.short_name,
            description=config.description,
        )

    return SingleJobLinearRampUpGenerator(
        job_name=config.job_name,
        concurrent_run_count=config.concurrent_run_count,
        ramp_up_millis=config.ramp_up_millis,
        use_jitter=config.use_jitter,
        generator_id=config.generator_id,
        short_name=config.short_name,
        description=config.description,
        clock=clock,
        rng=rng,
    )


def config_from_generator(generator: LoadGenerator) -> Union[RegexImmediateConfig, SingleJobRampUpConfig]:
    """Typed configuration of an existing policy (identity included)."""
    return parse_generator_config(generator.to_config())
