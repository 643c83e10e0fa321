# domain/models/approval_workflow.py
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator

class Role(Enum):
    ADMIN = "admin"
    DESIGNER = "designer"
    VENDOR = "vendor"
    CLIENT = "client"

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Parse a role tag, rejecting anything outside the closed set"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None

class Party(Enum):
    ADMIN = "admin"
    CLIENT = "client"

    @classmethod
    def for_role(cls, role: Role) -> Optional["Party"]:
        if role is Role.ADMIN:
            return cls.ADMIN
        if role is Role.CLIENT:
            return cls.CLIENT
        return None

class ApprovalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class ApprovalAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVOKE = "revoke"

class StageName(Enum):
    START = "start"
    COMPLETION = "completion"
    PAYMENT = "payment"
    ADDITIONAL_BUDGET = "additional_budget"

TASK_STAGES: Tuple[StageName, ...] = (StageName.START, StageName.COMPLETION)

@dataclass(frozen=True)
class Actor:
    """Identity performing an action, injected into every engine call"""
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def party(self) -> Optional[Party]:
        return Party.for_role(self.role)

@dataclass(frozen=True)
class ApprovalCell:
    """One party's decision within a stage"""
    status: ApprovalStatus = ApprovalStatus.PENDING
    updated_by: Optional[str] = None
    timestamp: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.status is ApprovalStatus.APPROVED

    @property
    def is_pending(self) -> bool:
        return self.status is ApprovalStatus.PENDING

@dataclass(frozen=True)
class DualPartyApprovalStage:
    """Admin + client approval pair; locked once both have approved"""
    admin: ApprovalCell = field(default_factory=ApprovalCell)
    client: ApprovalCell = field(default_factory=ApprovalCell)

    @property
    def is_fully_approved(self) -> bool:
        return self.admin.is_approved and self.client.is_approved

    def cell(self, party: Party) -> ApprovalCell:
        return self.admin if party is Party.ADMIN else self.client

    def with_cell(self, party: Party, cell: ApprovalCell) -> "DualPartyApprovalStage":
        if party is Party.ADMIN:
            return replace(self, admin=cell)
        return replace(self, client=cell)

@dataclass(frozen=True)
class ApprovalMatrix:
    """Set of dual-party stages scoped to one task or transaction"""
    stages: Dict[StageName, DualPartyApprovalStage]

    @classmethod
    def pending(cls, *stage_names: StageName) -> "ApprovalMatrix":
        return cls(stages={name: DualPartyApprovalStage() for name in stage_names})

    @classmethod
    def for_task(cls) -> "ApprovalMatrix":
        return cls.pending(*TASK_STAGES)

    def has_stage(self, name: StageName) -> bool:
        return name in self.stages

    def stage(self, name: StageName) -> DualPartyApprovalStage:
        return self.stages[name]

    def with_stage(self, name: StageName, stage: DualPartyApprovalStage) -> "ApprovalMatrix":
        stages = dict(self.stages)
        stages[name] = stage
        return ApprovalMatrix(stages=stages)

    def is_stage_fully_approved(self, name: StageName) -> bool:
        return self.has_stage(name) and self.stages[name].is_fully_approved

    @property
    def is_fully_approved(self) -> bool:
        """True when every stage in the matrix has both parties approved"""
        return bool(self.stages) and all(s.is_fully_approved for s in self.stages.values())

@dataclass(frozen=True)
class StageFullyApproved:
    """Domain event: both cells of a stage became APPROVED in one operation"""
    stage: StageName
    entity_id: Optional[str] = None

# Pydantic models for API request/response
class ApprovalDecisionModel(BaseModel):
    actor_id: str = Field(..., min_length=1, description="Identity of the acting user")
    actor_role: Role = Field(..., description="Role tag of the acting user")
    stage: StageName = Field(..., description="Approval stage being acted on")
    party: Party = Field(..., description="Party cell being acted on")
    action: ApprovalAction = Field(..., description="approve, reject or revoke")

    @field_validator("actor_role", mode="before")
    @classmethod
    def parse_role(cls, value):
        return Role.parse(value)

class ApprovalCellModel(BaseModel):
    status: ApprovalStatus
    updated_by: Optional[str] = None
    timestamp: Optional[datetime] = None

class ApprovalStageModel(BaseModel):
    admin: ApprovalCellModel
    client: ApprovalCellModel
    fully_approved: bool

class ApprovalMatrixModel(BaseModel):
    stages: Dict[str, ApprovalStageModel]

    @classmethod
    def from_matrix(cls, matrix: ApprovalMatrix) -> "ApprovalMatrixModel":
        return cls(stages={
            name.value: ApprovalStageModel(
                admin=ApprovalCellModel(**vars(stage.admin)),
                client=ApprovalCellModel(**vars(stage.client)),
                fully_approved=stage.is_fully_approved
            )
            for name, stage in matrix.stages.items()
        })
