"""
Generation requests.

Ephemeral, validated parameter sets for the four generation operations.
Each request knows its operation kind and how to render itself as the
canonical parameter mapping used for cache keys.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class OperationKind(Enum):
    """Billable generation operations."""
    SCAFFOLD = "scaffold"
    SCENE_EXPANSION = "scene_expansion"
    REFINEMENT = "refinement"
    MOVEMENT_REGENERATION = "movement_regeneration"


class SceneType(Enum):
    COMBAT = "combat"
    EXPLORATION = "exploration"
    SOCIAL = "social"
    PUZZLE = "puzzle"


class Difficulty(Enum):
    EASIER = "easier"
    STANDARD = "standard"
    HARDER = "harder"


class Stakes(Enum):
    LOW = "low"
    PERSONAL = "personal"
    HIGH = "high"
    WORLD = "world"


MAX_PARTY_SIZE = 8
MAX_PARTY_LEVEL = 20
MAX_TIER = 3
MIN_INSTRUCTION_LENGTH = 3


def tier_for_party_level(party_level: int) -> int:
    """Coarse power band used to filter retrievable content.

    Levels 1-3 are tier 1, 4-6 tier 2, everything above tier 3.
    """
    if party_level < 1:
        raise ValueError("party_level must be >= 1")
    return min(math.ceil(party_level / 3), MAX_TIER)


@dataclass(frozen=True)
class AdventureContext:
    """Adventure-wide parameters shared by every request."""
    frame: str
    focus: str
    party_size: int = 4
    party_level: int = 1
    difficulty: Difficulty = Difficulty.STANDARD
    stakes: Stakes = Stakes.PERSONAL
    custom_frame_description: Optional[str] = None

    def __post_init__(self):
        if not self.frame or not self.frame.strip():
            raise ValueError("frame is required and cannot be empty")
        if not self.focus or not self.focus.strip():
            raise ValueError("focus is required and cannot be empty")
        if not 1 <= self.party_size <= MAX_PARTY_SIZE:
            raise ValueError(f"party_size must be between 1 and {MAX_PARTY_SIZE}")
        if not 1 <= self.party_level <= MAX_PARTY_LEVEL:
            raise ValueError(f"party_level must be between 1 and {MAX_PARTY_LEVEL}")
        if not isinstance(self.difficulty, Difficulty):
            raise ValueError("difficulty must be a Difficulty")
        if not isinstance(self.stakes, Stakes):
            raise ValueError("stakes must be a Stakes")

    @property
    def tier(self) -> int:
        return tier_for_party_level(self.party_level)

    def canonical_params(self) -> Dict[str, Any]:
        return {
            "frame": self.frame,
            "focus": self.focus,
            "party_size": self.party_size,
            "party_level": self.party_level,
            "difficulty": self.difficulty.value,
            "stakes": self.stakes.value,
            "custom_frame_description": self.custom_frame_description,
        }


@dataclass(frozen=True)
class SceneOutline:
    """One beat of an adventure: its scaffold summary or expanded content."""
    id: str
    title: str
    scene_type: SceneType
    content: str = ""
    estimated_time: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("scene id is required")
        if not self.title or not self.title.strip():
            raise ValueError("scene title is required and cannot be empty")
        if not isinstance(self.scene_type, SceneType):
            raise ValueError("scene_type must be a SceneType")

    def canonical_params(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.scene_type.value,
            "content": self.content,
            "estimated_time": self.estimated_time,
        }


@dataclass(frozen=True)
class ScaffoldRequest:
    """Generate an adventure outline.

    Without ``adventure_id`` this is the first generation of a new adventure;
    with one it regenerates the scaffold of an existing adventure.
    """
    adventure: AdventureContext
    adventure_id: Optional[str] = None

    kind = OperationKind.SCAFFOLD

    @property
    def is_regeneration(self) -> bool:
        return self.adventure_id is not None

    def canonical_params(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "adventure": self.adventure.canonical_params()}


@dataclass(frozen=True)
class SceneExpansionRequest:
    """Expand a scene's scaffold summary into full content.

    Only the immediately adjacent scenes are passed for continuity.
    ``is_regeneration`` marks a re-expansion of an already expanded scene.
    """
    adventure: AdventureContext
    scene: SceneOutline
    adventure_id: Optional[str] = None
    previous_scene: Optional[SceneOutline] = None
    next_scene: Optional[SceneOutline] = None
    is_regeneration: bool = False

    kind = OperationKind.SCENE_EXPANSION

    def __post_init__(self):
        if self.is_regeneration and not self.adventure_id:
            raise ValueError("adventure_id is required to regenerate an expansion")

    def canonical_params(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "adventure": self.adventure.canonical_params(),
            "scene": self.scene.canonical_params(),
            "previous_scene": self.previous_scene.canonical_params() if self.previous_scene else None,
            "next_scene": self.next_scene.canonical_params() if self.next_scene else None,
        }


@dataclass(frozen=True)
class RefinementRequest:
    """Rewrite already expanded scene content following an instruction."""
    adventure: AdventureContext
    scene: SceneOutline
    instruction: str
    adventure_id: str

    kind = OperationKind.REFINEMENT
    is_regeneration = True

    def __post_init__(self):
        if not self.adventure_id:
            raise ValueError("adventure_id is required for refinement")
        if not self.instruction or len(self.instruction.strip()) < MIN_INSTRUCTION_LENGTH:
            raise ValueError(
                f"instruction must be at least {MIN_INSTRUCTION_LENGTH} characters long"
            )
        if not self.scene.content:
            raise ValueError("scene content is required for refinement")

    def canonical_params(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "adventure": self.adventure.canonical_params(),
            "scene": self.scene.canonical_params(),
            "instruction": self.instruction,
        }


@dataclass(frozen=True)
class MovementRegenerationRequest:
    """Replace one movement of a scaffold, keeping locked movements intact."""
    adventure: AdventureContext
    movement: SceneOutline
    adventure_id: str
    locked_movements: Tuple[SceneOutline, ...] = ()

    kind = OperationKind.MOVEMENT_REGENERATION
    is_regeneration = True

    def __post_init__(self):
        if not self.adventure_id:
            raise ValueError("adventure_id is required to regenerate a movement")

    def canonical_params(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "adventure": self.adventure.canonical_params(),
            "movement": self.movement.canonical_params(),
            "locked_movements": [m.canonical_params() for m in self.locked_movements],
        }
