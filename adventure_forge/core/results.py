"""
Typed generation results and schema-validated decoding.

Raw completions are decoded here, never at first use: JSON-typed operations
(scaffold, movement regeneration) are parsed and checked field by field;
free-text operations (expansion, refinement) must be non-empty. Any decode
failure becomes ``MalformedResponseError``.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Union

from .errors import MalformedResponseError
from .requests import OperationKind, SceneType


@dataclass(frozen=True)
class MovementOutline:
    """One movement of a generated scaffold."""
    id: str
    title: str
    scene_type: SceneType
    description: str
    estimated_time: str = ""
    order_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.scene_type.value,
            "description": self.description,
            "estimatedTime": self.estimated_time,
            "orderIndex": self.order_index,
        }


@dataclass(frozen=True)
class ScaffoldResult:
    """High-level adventure outline."""
    title: str
    description: str
    estimated_duration: str
    movements: Tuple[MovementOutline, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "estimatedDuration": self.estimated_duration,
            "movements": [m.to_dict() for m in self.movements],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ScaffoldResult":
        data = _require_object(data, "scaffold")
        movements_data = data.get("movements")
        if not isinstance(movements_data, list) or not movements_data:
            raise MalformedResponseError("scaffold 'movements' must be a non-empty list")

        movements = []
        for index, movement in enumerate(movements_data):
            path = f"movements[{index}]"
            movement = _require_object(movement, path)
            order_index = movement.get("orderIndex", index)
            if not isinstance(order_index, int) or isinstance(order_index, bool):
                raise MalformedResponseError(f"'{path}.orderIndex' must be an integer")
            movements.append(MovementOutline(
                id=str(movement.get("id") or f"movement-{index + 1}"),
                title=_require_text(movement, "title", path),
                scene_type=_require_scene_type(movement, path),
                description=_require_text(movement, "description", path),
                estimated_time=_optional_text(movement, "estimatedTime", path),
                order_index=order_index
            ))

        return cls(
            title=_require_text(data, "title", "scaffold"),
            description=_require_text(data, "description", "scaffold"),
            estimated_duration=_optional_text(data, "estimatedDuration", "scaffold"),
            movements=tuple(movements)
        )


@dataclass(frozen=True)
class MovementScaffoldResult:
    """Replacement outline for a single movement."""
    title: str
    description: str
    scene_type: SceneType
    estimated_time: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "type": self.scene_type.value,
            "estimatedTime": self.estimated_time,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MovementScaffoldResult":
        data = _require_object(data, "movement")
        return cls(
            title=_require_text(data, "title", "movement"),
            description=_require_text(data, "description", "movement"),
            scene_type=_require_scene_type(data, "movement"),
            estimated_time=_optional_text(data, "estimatedTime", "movement")
        )


@dataclass(frozen=True)
class SceneExpansionResult:
    """Full free-text content for an expanded scene."""
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content}

    @classmethod
    def from_dict(cls, data: Any) -> "SceneExpansionResult":
        data = _require_object(data, "expansion")
        return cls(content=_require_text(data, "content", "expansion"))


@dataclass(frozen=True)
class RefinementResult:
    """Rewritten content produced by a refinement instruction."""
    refined_content: str
    changes: List[str] = field(default_factory=lambda: ["Applied refinement"])

    def to_dict(self) -> Dict[str, Any]:
        return {"refinedContent": self.refined_content, "changes": list(self.changes)}

    @classmethod
    def from_dict(cls, data: Any) -> "RefinementResult":
        data = _require_object(data, "refinement")
        changes = data.get("changes", ["Applied refinement"])
        if not isinstance(changes, list) or not all(isinstance(c, str) for c in changes):
            raise MalformedResponseError("'refinement.changes' must be a list of strings")
        return cls(
            refined_content=_require_text(data, "refinedContent", "refinement"),
            changes=changes
        )


GenerationResult = Union[
    ScaffoldResult, MovementScaffoldResult, SceneExpansionResult, RefinementResult
]

_RESULT_TYPES = {
    OperationKind.SCAFFOLD: ScaffoldResult,
    OperationKind.MOVEMENT_REGENERATION: MovementScaffoldResult,
    OperationKind.SCENE_EXPANSION: SceneExpansionResult,
    OperationKind.REFINEMENT: RefinementResult,
}

JSON_KINDS = frozenset({OperationKind.SCAFFOLD, OperationKind.MOVEMENT_REGENERATION})


def parse_completion(kind: OperationKind, raw: str) -> GenerationResult:
    """Decode a raw LLM completion into the typed result for ``kind``.

    Raises:
        MalformedResponseError: If the completion is empty, not valid JSON
            for a JSON-typed operation, or structurally invalid
    """
    if raw is None or not raw.strip():
        raise MalformedResponseError(f"Empty completion for {kind.value}")

    if kind in JSON_KINDS:
        return _RESULT_TYPES[kind].from_dict(_load_json(raw))
    if kind is OperationKind.SCENE_EXPANSION:
        return SceneExpansionResult(content=raw.strip())
    return RefinementResult(refined_content=raw.strip())


def encode_result(result: GenerationResult) -> str:
    """Serialize a result into the opaque payload stored in the cache."""
    return json.dumps(result.to_dict(), sort_keys=True)


def decode_cached(kind: OperationKind, payload: str) -> GenerationResult:
    """Rebuild a result from a cached payload written by ``encode_result``."""
    return _RESULT_TYPES[kind].from_dict(_load_json(payload))


def _load_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"Completion is not valid JSON: {e}") from e


def _require_object(data: Any, path: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedResponseError(f"'{path}' must be a JSON object")
    return data


def _require_text(data: Dict[str, Any], key: str, path: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedResponseError(f"Missing required '{key}' in {path}")
    return value


def _optional_text(data: Dict[str, Any], key: str, path: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedResponseError(f"'{key}' in {path} must be a string")
    return value


def _require_scene_type(data: Dict[str, Any], path: str) -> SceneType:
    value = data.get("type")
    try:
        return SceneType(str(value).lower())
    except ValueError:
        valid = [t.value for t in SceneType]
        raise MalformedResponseError(f"'type' in {path} must be one of: {valid}")
