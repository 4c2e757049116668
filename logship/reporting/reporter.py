"""Per-unit outcome accumulation for configure and recover batches."""

import logging

from logship.models.errors import error_category
from logship.models.types import OutcomeRecord, Result

logger = logging.getLogger(__name__)


class ResultReporter:
    """Collects exactly one OutcomeRecord per processed unit, in order."""

    def __init__(self, primary_role: str = "", secondary_role: str = ""):
        self.primary_role = primary_role
        self.secondary_role = secondary_role
        self._records = []

    def record_success(self, primary_database: str, secondary_database: str,
                       comment: str = "", primary_role: str = None,
                       secondary_role: str = None) -> OutcomeRecord:
        record = OutcomeRecord(
            primary_role=primary_role if primary_role is not None else self.primary_role,
            secondary_role=secondary_role if secondary_role is not None else self.secondary_role,
            primary_database=primary_database,
            secondary_database=secondary_database,
            result=Result.SUCCESS,
            comment=comment,
        )
        self._records.append(record)
        logger.info("%s/%s -> %s/%s: Success",
                    record.primary_role, primary_database,
                    record.secondary_role, secondary_database)
        return record

    def record_failure(self, primary_database: str, secondary_database: str,
                       error: BaseException, step: str = "", primary_role: str = None,
                       secondary_role: str = None) -> OutcomeRecord:
        comment = f"{step}: {error}" if step else str(error)
        record = OutcomeRecord(
            primary_role=primary_role if primary_role is not None else self.primary_role,
            secondary_role=secondary_role if secondary_role is not None else self.secondary_role,
            primary_database=primary_database,
            secondary_database=secondary_database,
            result=Result.FAILED,
            comment=comment,
            error=error_category(error),
        )
        self._records.append(record)
        logger.error("%s/%s -> %s/%s: Failed (%s)",
                     record.primary_role, primary_database,
                     record.secondary_role, secondary_database, comment)
        return record

    @property
    def records(self) -> list:
        return list(self._records)

    def summary(self) -> dict:
        succeeded = sum(1 for r in self._records if r.succeeded)
        return {
            "total": len(self._records),
            "succeeded": succeeded,
            "failed": len(self._records) - succeeded,
        }

    def to_dicts(self) -> list:
        return [r.to_dict() for r in self._records]
