"""Immutable funnel graph parsed from a funnel's stored flow.

The flow is authored by the funnel builder and stored as JSONB with camelCase
keys::

    {
        "startBlockId": "welcome",
        "stages": [{"name": "WELCOME", "blockIds": ["welcome"]}],
        "blocks": {
            "welcome": {
                "message": "Hi! What brings you here?",
                "options": [{"text": "Learn more", "nextBlockId": "value_1"}],
            }
        },
    }

Parsing happens once per request; the engine only ever sees a validated graph.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from funnelchat.services.errors import FunnelValidationError


class FunnelOption(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str
    next_block_id: Optional[str] = Field(default=None, alias="nextBlockId")

    @property
    def is_terminal(self) -> bool:
        return self.next_block_id is None


class FunnelBlock(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    message: str = ""
    options: tuple[FunnelOption, ...] = ()
    resource_name: Optional[str] = Field(default=None, alias="resourceName")


class FunnelStage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    block_ids: tuple[str, ...] = Field(default=(), alias="blockIds")


class FunnelGraph(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start_block_id: str = Field(alias="startBlockId")
    stages: tuple[FunnelStage, ...] = ()
    blocks: dict[str, FunnelBlock] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _stamp_block_ids(cls, data: Any) -> Any:
        # Block ids live in the mapping keys; copy them onto each block.
        if isinstance(data, dict) and isinstance(data.get("blocks"), dict):
            blocks = {}
            for block_id, block in data["blocks"].items():
                if isinstance(block, dict):
                    block = {**block, "id": block_id}
                blocks[block_id] = block
            data = {**data, "blocks": blocks}
        return data

    @model_validator(mode="after")
    def _check_references(self) -> "FunnelGraph":
        if self.start_block_id not in self.blocks:
            raise ValueError(f"start block '{self.start_block_id}' is not defined")

        for block_id, block in self.blocks.items():
            for option in block.options:
                if option.next_block_id is not None and option.next_block_id not in self.blocks:
                    raise ValueError(f"block '{block_id}' option '{option.text}' points to unknown block '{option.next_block_id}'")

        seen: dict[str, str] = {}
        for stage in self.stages:
            if len(set(stage.block_ids)) != len(stage.block_ids):
                raise ValueError(f"stage '{stage.name}' lists a block more than once")
            for block_id in stage.block_ids:
                if block_id not in self.blocks:
                    raise ValueError(f"stage '{stage.name}' references unknown block '{block_id}'")
                if block_id in seen:
                    raise ValueError(f"block '{block_id}' belongs to stages '{seen[block_id]}' and '{stage.name}'")
                seen[block_id] = stage.name
        return self

    @classmethod
    def from_flow(cls, flow: Any) -> "FunnelGraph":
        """Parse and validate a stored flow. Raises FunnelValidationError."""
        if not isinstance(flow, dict):
            raise FunnelValidationError("Funnel flow is missing or not an object")
        try:
            return cls.model_validate(flow)
        except PydanticValidationError as e:
            details = "; ".join(err["msg"] for err in e.errors())
            raise FunnelValidationError(f"Invalid funnel flow: {details}") from e

    def get_block(self, block_id: Optional[str]) -> Optional[FunnelBlock]:
        if block_id is None:
            return None
        return self.blocks.get(block_id)

    def stage_of(self, block_id: Optional[str]) -> Optional[FunnelStage]:
        """Return the stage containing block_id, or None."""
        if block_id is None:
            return None
        for stage in self.stages:
            if block_id in stage.block_ids:
                return stage
        return None

    def stage_by_name(self, name: str) -> Optional[FunnelStage]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def block_in_stage(self, block_id: Optional[str], stage_name: str) -> bool:
        stage = self.stage_of(block_id)
        return stage is not None and stage.name == stage_name
