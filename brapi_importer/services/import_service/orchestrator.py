"""Workflow orchestrator: runs one preview or commit of an uploaded file."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any

from brapi_importer.services.brapi import BrAPIClient

from .constants import EMPTY_FILE_MSG
from .errors import UnprocessableError, ValidationErrors
from .mapping import map_rows, resolve_user_inputs
from .resolvers import ExperimentResolver, GermplasmResolver, SampleResolver, WorkflowResolver
from .results import ImportContext, RowResult
from .workflows import WorkflowKind, WorkflowMapping, get_mapping

logger = logging.getLogger(__name__)


class WorkflowStage(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    RESOLVING = "resolving"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


StageCallback = Callable[[WorkflowStage], Awaitable[None]]

RESOLVERS: dict[WorkflowKind, Callable[[ImportContext, WorkflowMapping], WorkflowResolver]] = {
    WorkflowKind.GERMPLASM: GermplasmResolver,
    WorkflowKind.NEW_EXPERIMENT: partial(ExperimentResolver, append=False),
    WorkflowKind.APPEND_OVERWRITE: partial(ExperimentResolver, append=True),
    WorkflowKind.SAMPLE_SUBMISSION: SampleResolver,
}

PROVENANCE_KINDS = {WorkflowKind.SAMPLE_SUBMISSION: "submissions"}


@dataclass
class ImportOutcome:
    """Result of a run. ``rows`` are returned even when row errors were found."""

    rows: list[RowResult]
    statistics: dict[str, dict[str, int]]
    errors: ValidationErrors = field(default_factory=ValidationErrors)
    committed: bool = False

    @property
    def has_errors(self) -> bool:
        return self.errors.has_errors()

    def preview(self) -> dict[str, Any]:
        return {
            "rows": [row.to_preview() for row in self.rows],
            "statistics": self.statistics,
        }


async def run_import(
    *,
    client: BrAPIClient,
    workflow_id: str,
    program_id: str,
    headers: list[str],
    rows: list[dict[str, Any]],
    job_id: str,
    user_id: str,
    reference_source: str,
    user_fields: dict[str, str] | None = None,
    commit: bool = False,
    overwrite: bool = False,
    overwrite_reason: str | None = None,
    on_stage: StageCallback | None = None,
) -> ImportOutcome:
    """Map, validate and resolve a parsed file; write it when committing.

    Preview and commit run the same resolution, so their NEW/EXISTING tags
    agree. Nothing is written while any row carries an error.

    Raises:
        ImportFailure: For file-scoped problems (missing columns, unknown
            references, conflicts). ``ValidatorError`` when a whole-file
            check flagged rows.
        BrAPIStoreError: If the BrAPI store fails.
    """
    mapping = get_mapping(workflow_id)

    await _notify(on_stage, WorkflowStage.VALIDATING)
    mapped = map_rows(mapping, headers, rows)
    if not mapped.rows:
        raise UnprocessableError(EMPTY_FILE_MSG)
    user_inputs = resolve_user_inputs(mapping, user_fields)

    ctx = ImportContext(
        client=client,
        program_id=program_id,
        job_id=job_id,
        user_id=user_id,
        reference_source=reference_source,
        user_inputs=user_inputs,
        overwrite=overwrite,
        overwrite_reason=overwrite_reason,
        provenance_kind=PROVENANCE_KINDS.get(mapping.workflow, "imports"),
    )
    resolver = RESOLVERS[mapping.workflow](ctx, mapping)

    await _notify(on_stage, WorkflowStage.RESOLVING)
    results = await resolver.resolve(mapped)
    outcome = ImportOutcome(rows=results, statistics=resolver.statistics(results), errors=ctx.errors)

    if outcome.has_errors:
        logger.warning(
            "Import %s: %d field error(s) across %d row(s)",
            job_id,
            len(ctx.errors),
            len(ctx.errors.row_errors()),
        )
    elif commit:
        await _notify(on_stage, WorkflowStage.WRITING)
        await resolver.commit(results)
        outcome.committed = True
        logger.info("Import %s committed %d row(s) for workflow %s", job_id, len(results), workflow_id)

    await _notify(on_stage, WorkflowStage.DONE)
    return outcome


async def _notify(on_stage: StageCallback | None, stage: WorkflowStage) -> None:
    if on_stage is not None:
        await on_stage(stage)
