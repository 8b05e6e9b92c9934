"""Single-file edits: ask the model for new content, write it and commit."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ..budget import Budget
from ..models.llm_client import LLMClient, LLMRequest, extract_code_block
from ..pipeline import Persistence, PipelineStep
from ..prompts import SYSTEM_PROMPT, render_edit_prompt
from .types import RecordModel, RefactorStepResult

LOGGER = logging.getLogger(__name__)

GENERATE_EDIT_STEP = "generate-edit"


class UnreadableFileError(ValueError):
    """The file chosen for editing is not UTF-8 text."""


@dataclass(slots=True)
class EditRequest:
    """One attempt at editing ``file_path`` with ``model``."""

    file_path: str
    objective: str
    model: str
    attempt: int = 1
    budget: Optional[Budget] = None


class GenerateEditInput(RecordModel):
    file_path: str
    objective: str
    file_contents: str
    model: str
    attempt: int = 1


class GeneratedEdit(RecordModel):
    file_contents: str
    raw_response: str


def make_generate_edit_step(
    client: LLMClient,
    *,
    budget: Optional[Budget] = None,
) -> PipelineStep[GenerateEditInput, GeneratedEdit]:
    """Memoized model call producing the full new content of one file."""

    async def _generate(request: GenerateEditInput, scope: Optional[Persistence]) -> GeneratedEdit:
        completion = await client.complete(
            LLMRequest(
                prompt=render_edit_prompt(
                    request.objective,
                    request.file_path,
                    request.file_contents,
                    attempt=request.attempt,
                ),
                system_prompt=SYSTEM_PROMPT,
                model=request.model,
                budget=budget,
                label=scope.location if scope else GENERATE_EDIT_STEP,
            )
        )
        return GeneratedEdit(
            file_contents=extract_code_block(completion.text),
            raw_response=completion.text,
        )

    return PipelineStep(
        name=GENERATE_EDIT_STEP,
        input_model=GenerateEditInput,
        result_model=GeneratedEdit,
        transform=_generate,
    )


class EditExecutor(Protocol):
    """Produce and commit one edit; ``None`` means the file did not change."""

    async def __call__(
        self,
        request: EditRequest,
        persistence: Optional[Persistence],
    ) -> Optional[RefactorStepResult]: ...


class CommitsPaths(Protocol):
    root: Path

    def commit_paths(self, paths: list[str], message: str) -> Optional[str]: ...


class ModelStepExecutor:
    """Edit files in the repository at ``vcs.root`` using ``client``."""

    def __init__(self, client: LLMClient, vcs: CommitsPaths) -> None:
        self._client = client
        self._vcs = vcs

    async def __call__(
        self,
        request: EditRequest,
        persistence: Optional[Persistence],
    ) -> Optional[RefactorStepResult]:
        path = self._vcs.root / request.file_path
        try:
            original = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except UnicodeDecodeError as error:
            raise UnreadableFileError(
                f"{request.file_path} is not UTF-8 text ({error.reason} at byte {error.start})"
            ) from error

        step = make_generate_edit_step(self._client, budget=request.budget)
        edit = await step.execute(
            GenerateEditInput(
                file_path=request.file_path,
                objective=request.objective,
                file_contents=original,
                model=request.model,
                attempt=request.attempt,
            ),
            persistence,
        )
        if edit.file_contents == original:
            LOGGER.info("Model left %s unchanged", request.file_path)
            return None

        await asyncio.to_thread(path.write_text, edit.file_contents, encoding="utf-8")
        commit = await asyncio.to_thread(
            self._vcs.commit_paths,
            [request.file_path],
            f"refactor-bot: update {request.file_path}",
        )
        if commit is None:
            return None
        return RefactorStepResult(
            task=f"edit {request.file_path} with {request.model} (attempt {request.attempt})",
            file_contents=edit.file_contents,
            commit=commit,
        )


__all__ = [
    "EditExecutor",
    "EditRequest",
    "GENERATE_EDIT_STEP",
    "GenerateEditInput",
    "GeneratedEdit",
    "ModelStepExecutor",
    "UnreadableFileError",
    "make_generate_edit_step",
]
