import os


def GetEnv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def GetIntEnv(name: str, default: int) -> int:
    raw = GetEnv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


class FeeSettings:
    Currency = GetEnv("FEE_CURRENCY", "RON")
    MaxFeeMajor = GetIntEnv("FEE_MAX_MAJOR", 10000)
    MinorUnitScale = 100
    NoFeeText = GetEnv("FEE_NO_FEE_TEXT", "Free enrollment")

    @property
    def MaxFeeMinor(self) -> int:
        return self.MaxFeeMajor * self.MinorUnitScale


Settings = FeeSettings()
