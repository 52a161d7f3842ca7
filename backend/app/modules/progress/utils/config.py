from datetime import timedelta

from app.modules.enrollments.utils.config import GetIntEnv


class ProgressSettings:
    LockTtlSeconds = GetIntEnv("CARD_LOCK_TTL_SECONDS", 300)
    MaxBatchMoves = GetIntEnv("PROGRESS_MAX_BATCH_MOVES", 100)

    @property
    def LockTtl(self) -> timedelta:
        return timedelta(seconds=self.LockTtlSeconds)


Settings = ProgressSettings()
