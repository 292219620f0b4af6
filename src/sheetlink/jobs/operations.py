"""Column-transform job — fill a target column with LLM output, row by row.

Learn: For every row of a sheet:
1. Join the text of the source columns
2. Ask the model for a JSON object (summary / score / key terms)
3. Pull the operation's required field out of the answer
4. Write it into the target column

Rows go in batches of 25: the model calls of one batch run concurrently,
then all successful rows of the batch are written with a single
update_rows call. A row that fails is counted and skipped — only a sheet
fetch or write failure fails the whole job.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from sheetlink.clients.completions import CompletionClient, CompletionError
from sheetlink.clients.smartsheet import SheetClient
from sheetlink.jobs.queue import JobContext
from sheetlink.schemas.job import ColumnTransformRequest, OperationType
from sheetlink.services.sheet_cache import SheetCache

logger = structlog.get_logger()

COLUMN_TRANSFORM = "column_transform"
BATCH_SIZE = 25

DEFAULT_MISSION = "Boston Children's Hospital's mission"


@dataclass(frozen=True)
class OperationSpec:
    required_field: str
    prompt: str


OPERATIONS: dict[str, OperationSpec] = {
    "SUMMARIZE": OperationSpec(
        required_field="summary",
        prompt=(
            "Analyze and summarize the following content:\n"
            "Content from columns: {columns}\n"
            "{{content}}\n\n"
            "Provide a concise summary (at most 500 characters) that captures "
            'the key points. Respond with a JSON object: {{"summary": string}}.'
        ),
    ),
    "SCORE_ALIGNMENT": OperationSpec(
        required_field="score",
        prompt=(
            "Analyze the following content and score its alignment with {mission}:\n"
            "Content from columns: {columns}\n"
            "{{content}}\n\n"
            "Consider:\n"
            "- Pediatric healthcare focus\n"
            "- Innovation and research\n"
            "- Patient-centered care\n"
            "- Family-centered approach\n\n"
            "Provide a score from 1-100 based on alignment. "
            'Respond with a JSON object: {{"score": number}}.'
        ),
    ),
    "EXTRACT_TERMS": OperationSpec(
        required_field="terms",
        prompt=(
            "Extract key terms from the following content:\n"
            "Content from columns: {columns}\n"
            "{{content}}\n\n"
            "Identify and list the most important terms (at most 7), focusing on "
            "medical terminology, technical concepts, and significant phrases. "
            'Respond with a JSON object: {{"terms": [string]}}.'
        ),
    ),
}


def build_prompt(operation: OperationType, source_columns: list[str], parameters: Optional[dict] = None) -> str:
    """Fill in everything but {content}, which is per row."""
    spec = OPERATIONS[operation]
    mission = (parameters or {}).get("mission", DEFAULT_MISSION)
    return spec.prompt.format(columns=", ".join(source_columns), mission=mission)


def extract_content(row: dict[str, Any], source_columns: list[str]) -> str:
    cells = {str(c.get("columnId")): c for c in row.get("cells", [])}
    parts = []
    for column_id in source_columns:
        cell = cells.get(str(column_id))
        value = cell.get("value") if cell else None
        parts.append("" if value is None else str(value))
    return " ".join(parts)


def extract_value(answer: dict[str, Any], operation: OperationType) -> Any:
    field = OPERATIONS[operation].required_field
    value = answer.get(field)
    if value is None or value == "" or value == []:
        raise ValueError(f"Missing required field: {field}")
    if isinstance(value, list):
        # Cells hold scalars
        return ", ".join(str(v) for v in value)
    return value


def _column_id(value: str) -> Any:
    return int(value) if value.isdigit() else value


class ColumnTransformJob:
    """Handler for COLUMN_TRANSFORM jobs. Call it like a function."""

    def __init__(
        self,
        sheets: SheetClient,
        completions: CompletionClient,
        cache: SheetCache,
        batch_size: int = BATCH_SIZE,
    ):
        self.sheets = sheets
        self.completions = completions
        self.cache = cache
        self.batch_size = batch_size

    async def __call__(self, payload: dict[str, Any], ctx: JobContext) -> dict[str, int]:
        request = ColumnTransformRequest.model_validate(payload)
        op = request.operation
        template = build_prompt(op.type, request.source_columns, op.parameters)
        log = logger.bind(job_id=ctx.job_id, sheet_id=request.sheet_id, operation=op.type)

        sheet = await self.sheets.get_sheet(request.sheet_id)
        rows = sheet.get("rows", [])
        total = len(rows)
        processed = failed = 0
        await ctx.report_progress(total=total, processed=0, failed=0)
        log.info("column_transform.started", rows=total)

        for offset in range(0, total, self.batch_size):
            batch = rows[offset:offset + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._transform_row(row, request, template) for row in batch)
            )
            updates = [u for u in outcomes if u is not None]
            if updates:
                await self.sheets.update_rows(request.sheet_id, updates)

            processed += len(batch)
            failed += len(batch) - len(updates)
            await ctx.report_progress(processed=processed, failed=failed)

        # Our own writes make the cached snapshot stale
        self.cache.invalidate(request.sheet_id)
        log.info("column_transform.finished", processed=processed, failed=failed)
        return {"processed": processed, "failed": failed, "total": total}

    async def _transform_row(
        self,
        row: dict[str, Any],
        request: ColumnTransformRequest,
        template: str,
    ) -> Optional[dict[str, Any]]:
        content = extract_content(row, request.source_columns)
        try:
            answer = await self.completions.complete_json(
                template.replace("{content}", content)
            )
            value = extract_value(answer, request.operation.type)
        except (CompletionError, ValueError) as e:
            logger.warning("column_transform.row_failed", row_id=row.get("id"), error=str(e))
            return None
        return {
            "id": row.get("id"),
            "cells": [{"columnId": _column_id(request.target_column), "value": value}],
        }
