"""Environment variable parsing shared by the component configs."""

from __future__ import annotations

import os

from moderne_connect.errors import ConfigError

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def env_str(env_var: str, default: str | None = None) -> str | None:
    """Return a stripped env var, or ``default`` when unset or blank."""
    raw = os.environ.get(env_var, "")
    if not raw.strip():
        return default
    return raw.strip()


def parse_positive_int(env_var: str, default: int) -> int:
    """Read a positive integer env var, falling back to a default."""
    raw = os.environ.get(env_var, "")
    if not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError.invalid(env_var, f"must be an integer, got: {raw!r}") from exc
    if value < 1:
        raise ConfigError.invalid(env_var, f"must be positive, got: {value}")
    return value


def parse_non_negative_float(env_var: str, default: float) -> float:
    """Read a non-negative number of seconds (or bytes) from the environment."""
    raw = os.environ.get(env_var, "")
    if not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError.invalid(env_var, f"must be a number, got: {raw!r}") from exc
    if value < 0:
        raise ConfigError.invalid(env_var, f"must not be negative, got: {value:g}")
    return value


def parse_bool(env_var: str, *, default: bool) -> bool:
    """Read a boolean flag such as ``true``/``false`` or ``1``/``0``."""
    raw = os.environ.get(env_var, "")
    normalized = raw.strip().lower()
    if not normalized:
        return default
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigError.invalid(env_var, f"must be a boolean, got: {raw!r}")


def parse_list(env_var: str) -> tuple[str, ...]:
    """Read a comma-separated list, dropping blank entries."""
    raw = os.environ.get(env_var, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def parse_host_limits(env_var: str) -> tuple[tuple[str, int], ...]:
    """Read ``host=limit`` pairs such as ``github.com=4,gitlab.com=2``."""
    limits: list[tuple[str, int]] = []
    for item in parse_list(env_var):
        host, sep, raw_limit = item.partition("=")
        if not sep or not host.strip():
            raise ConfigError.invalid(env_var, f"expected host=limit, got: {item!r}")
        try:
            limit = int(raw_limit)
        except ValueError as exc:
            raise ConfigError.invalid(
                env_var, f"limit for {host.strip()} must be an integer"
            ) from exc
        if limit < 1:
            raise ConfigError.invalid(
                env_var, f"limit for {host.strip()} must be positive"
            )
        limits.append((host.strip(), limit))
    return tuple(limits)
