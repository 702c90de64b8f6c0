from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

PROFILE_STANDARD = "standard"
PROFILE_CONSTRAINED = "constrained"
PROFILES = (PROFILE_STANDARD, PROFILE_CONSTRAINED)

MB = 1024 * 1024

DEFAULT_LEGACY_CODE_PAGE = "cp949"


@dataclass(frozen=True)
class AttemptTimeouts:
    primary: float
    legacy_primary: float
    secondary: float
    tertiary: float


STANDARD_TIMEOUTS = AttemptTimeouts(primary=60.0, legacy_primary=10.0, secondary=30.0, tertiary=10.0)
CONSTRAINED_TIMEOUTS = AttemptTimeouts(primary=15.0, legacy_primary=5.0, secondary=10.0, tertiary=5.0)


@dataclass(frozen=True)
class Settings:
    """Deployment-dependent knobs for one conversion request.

    The constrained profile mirrors a serverless deployment: shorter reader
    timeouts, a 10 MB upload ceiling and a hard 3 MB cutoff for legacy
    (OLE2) workbooks.
    """

    profile: str = PROFILE_STANDARD
    timeouts: AttemptTimeouts = STANDARD_TIMEOUTS
    max_upload_bytes: int = 50 * MB
    legacy_size_limit_bytes: Optional[int] = None
    legacy_code_page: str = DEFAULT_LEGACY_CODE_PAGE
    output_stamp: Optional[str] = None
    log_level: str = "INFO"

    @property
    def constrained(self) -> bool:
        return self.profile == PROFILE_CONSTRAINED

    @classmethod
    def standard(cls, **overrides) -> "Settings":
        return replace(cls(), **overrides)

    @classmethod
    def constrained_profile(cls, **overrides) -> "Settings":
        base = cls(
            profile=PROFILE_CONSTRAINED,
            timeouts=CONSTRAINED_TIMEOUTS,
            max_upload_bytes=10 * MB,
            legacy_size_limit_bytes=3 * MB,
        )
        return replace(base, **overrides)

    @classmethod
    def for_profile(cls, profile: str, **overrides) -> "Settings":
        if profile not in PROFILES:
            raise ValueError(f"Unknown profile '{profile}'. Expected one of: {', '.join(PROFILES)}")
        if profile == PROFILE_CONSTRAINED:
            return cls.constrained_profile(**overrides)
        return cls.standard(**overrides)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        profile = (env.get("ORDER_SHEET_PROFILE") or "").strip().lower()
        if not profile:
            profile = PROFILE_CONSTRAINED if env.get("VERCEL") == "1" else PROFILE_STANDARD
        return cls.for_profile(
            profile,
            legacy_code_page=env.get("ORDER_SHEET_LEGACY_CODE_PAGE") or DEFAULT_LEGACY_CODE_PAGE,
            output_stamp=env.get("ORDER_SHEET_OUTPUT_STAMP") or None,
            log_level=(env.get("ORDER_SHEET_LOG_LEVEL") or "INFO").upper(),
        )
