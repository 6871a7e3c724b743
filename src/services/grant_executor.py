"""Grant executor: turns approved decisions into resealed record policies."""

import logging
import uuid
from collections.abc import Collection, Iterable

from src.core.exceptions import AppError, NotFoundError, ValidationError
from src.models.domain.grant import BatchGrantResult, GrantResult
from src.models.domain.principal import normalize_principal
from src.services.key_service_client import KeyServiceClient
from src.services.record_service import RECORD_DELETED_REASON, RecordService

logger = logging.getLogger(__name__)


class GrantExecutor:
    """Adds or removes one principal on record policies.

    The only caller of ``KeyServiceClient.reseal``. Single-record calls
    return a :class:`GrantResult` instead of raising for expected failures
    (missing record, key service errors, exhausted policy conflicts), and
    batches fold those results so one bad record never aborts its siblings.
    """

    def __init__(
        self,
        records: RecordService,
        key_service: KeyServiceClient | None = None,
    ) -> None:
        self.records = records
        self.key_service = key_service or records.key_service

    async def _reseal(
        self,
        wrapped_key: str,
        old_policy: frozenset[str],
        new_policy: frozenset[str],
    ) -> str:
        return await self.key_service.reseal(wrapped_key, old_policy, new_policy)

    async def grant(self, record_id: uuid.UUID, principal: str) -> GrantResult:
        """Add ``principal`` to a record's policy.

        Idempotent: if the principal is already authorized nothing is
        resealed and the result reports ``changed=False``.
        """
        principal = normalize_principal(principal)
        try:
            _, changed = await self.records.update_policy(
                record_id,
                lambda policy: policy | {principal},
                self._reseal,
            )
        except AppError as e:
            logger.warning(
                "Grant failed",
                extra={
                    "record_id": str(record_id),
                    "principal": principal,
                    "error": e.detail,
                },
            )
            return GrantResult(record_id=record_id, ok=False, error=e.detail)

        if changed:
            logger.info(
                "Access granted",
                extra={"record_id": str(record_id), "principal": principal},
            )
        return GrantResult(record_id=record_id, ok=True, changed=changed)

    async def revoke(self, record_id: uuid.UUID, principal: str) -> GrantResult:
        """Remove ``principal`` from a record's policy.

        The owner can never be removed. A record that no longer exists has
        nothing left to revoke and reports success.
        """
        principal = normalize_principal(principal)

        def remove(policy: frozenset[str]) -> frozenset[str]:
            return policy - {principal}

        try:
            record, changed = await self.records.update_policy(
                record_id,
                remove,
                self._reseal,
            )
            if record.patient_wallet == principal:
                raise ValidationError(
                    detail="The owner cannot be removed from a record's policy"
                )
        except NotFoundError:
            return GrantResult(record_id=record_id, ok=True, changed=False)
        except AppError as e:
            logger.warning(
                "Revoke failed",
                extra={
                    "record_id": str(record_id),
                    "principal": principal,
                    "error": e.detail,
                },
            )
            return GrantResult(record_id=record_id, ok=False, error=e.detail)

        if changed:
            logger.info(
                "Access revoked",
                extra={"record_id": str(record_id), "principal": principal},
            )
        return GrantResult(record_id=record_id, ok=True, changed=changed)

    async def grant_batch(
        self,
        record_ids: Iterable[uuid.UUID],
        principal: str,
        deleted: Collection[uuid.UUID] = (),
    ) -> BatchGrantResult:
        """Grant ``principal`` on each record in turn and fold the results.

        Records listed in ``deleted`` report a failure without being
        touched. Runs sequentially on the caller's session, which cannot be
        shared by concurrent tasks.
        """
        results: list[GrantResult] = []
        for record_id in record_ids:
            if record_id in deleted:
                results.append(
                    GrantResult(record_id=record_id, ok=False, error=RECORD_DELETED_REASON)
                )
            else:
                results.append(await self.grant(record_id, principal))
        batch = BatchGrantResult(results=results)
        logger.info(
            "Batch grant finished",
            extra={
                "principal": principal,
                "success_count": batch.success_count,
                "fail_count": batch.fail_count,
            },
        )
        return batch

    async def revoke_batch(
        self,
        record_ids: Iterable[uuid.UUID],
        principal: str,
        retained: Collection[uuid.UUID] = (),
    ) -> BatchGrantResult:
        """Revoke ``principal`` on each record in turn and fold the results.

        Records listed in ``retained`` are still backed by another grant and
        report success without their policy being touched.
        """
        results: list[GrantResult] = []
        for record_id in record_ids:
            if record_id in retained:
                results.append(GrantResult(record_id=record_id, ok=True, changed=False))
            else:
                results.append(await self.revoke(record_id, principal))
        return BatchGrantResult(results=results)
