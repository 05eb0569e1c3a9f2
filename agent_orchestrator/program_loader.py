"""Load the program registry from a YAML file."""

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from agent_orchestrator.models.program import Program
from agent_orchestrator.store.base import RecordStore

log = logging.getLogger(__name__)


class ProgramRegistry(BaseModel):
    """Top level document of a programs file."""

    version: str = "1.0"
    programs: Sequence[Program] = Field(default_factory=tuple)


async def load_programs(path: Path) -> Sequence[Program]:
    """Load and validate the programs declared in a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If a program is malformed

    """
    if not path.exists():
        raise FileNotFoundError(f"Programs file not found: {path}")

    content = await asyncio.to_thread(path.read_text, encoding="utf-8")
    data: Any = yaml.safe_load(content) or {}
    registry = ProgramRegistry.model_validate(data)

    codes = [program.code for program in registry.programs]
    duplicates = sorted({code for code in codes if codes.count(code) > 1})
    if duplicates:
        raise ValueError(f"Duplicate program codes in {path}: {', '.join(duplicates)}")

    log.info("Loaded %d program(s) from %s", len(registry.programs), path)
    return registry.programs


async def register_programs(store: RecordStore, programs: Sequence[Program]) -> None:
    """Save programs into a record store."""
    for program in programs:
        await store.save_program(program)
