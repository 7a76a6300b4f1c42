"""
Prompt assembly for every generation operation.

System prompts come from a frame + content-type table; user prompts
interpolate the request parameters. Temperatures are resolved through the
temperature policy keyed by the category of the content being produced.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Union

from .requests import (
    MovementRegenerationRequest,
    RefinementRequest,
    ScaffoldRequest,
    SceneExpansionRequest,
)
from .temperature import (
    TEMPERATURE_POLICY,
    ContentCategory,
    TemperaturePolicy,
    category_for_scene_type,
)

GenerationRequest = Union[
    ScaffoldRequest, SceneExpansionRequest, RefinementRequest, MovementRegenerationRequest
]

JSON_RESPONSE_FORMAT = "json_object"

SCAFFOLD_PROMPT = "scaffold"
REFINEMENT_PROMPT = "refinement"

DEFAULT_FRAME = "default"

FRAME_PROMPTS: Dict[str, Dict[str, str]] = {
    "witherwild": {
        "scaffold": """You are an expert Daggerheart GM crafting adventures in The Witherwild.

Key themes:
- Ancient corruption spreading through nature
- Fey bargains and trickery
- Lost civilizations reclaimed by the forest
- The balance between civilization and wilderness

When generating adventures:
1. Include at least one corruption-themed encounter
2. Feature Frame-specific adversaries (Tangle Brambles, Dryads, Corrupted Beasts)
3. Incorporate environmental hazards unique to the Witherwild
4. Reference the Frame's core conflict between nature and corruption
5. Use evocative, nature-focused language""",
        "movement_combat": """Design combat encounters for The Witherwild featuring:
- Corrupted creatures with unique abilities
- Environmental hazards like spreading brambles or toxic spores
- Verticality using trees and cliffs
- Weather effects that impact combat
- Opportunities to use nature to advantage""",
        "movement_exploration": """Create exploration scenes showcasing The Witherwild's dual nature:
- Ancient ruins overtaken by aggressive plant life
- Fey crossings and their unpredictable effects
- Hidden groves with magical properties
- Signs of corruption spreading through the land
- Environmental puzzles using natural elements""",
        "movement_social": """NPCs in The Witherwild should reflect the Frame's themes:
- Druids and rangers fighting corruption
- Fey creatures with alien morality and bargains
- Survivors of lost settlements telling cautionary tales
- Corrupted beings that might be saved
- Nature spirits with their own agendas""",
        "movement_puzzle": """Puzzles in The Witherwild involve:
- Natural patterns and cycles
- Fey logic and riddles
- Cleansing corrupted areas
- Ancient druidic mechanisms
- Living puzzles that grow and change""",
    },
    "custom": {
        "scaffold": """You are crafting a unique adventure for a custom Daggerheart setting.

Pay special attention to:
1. The unique elements described by the user
2. Maintaining internal consistency
3. Creating a cohesive tone and atmosphere
4. Integrating custom elements naturally
5. Respecting established Daggerheart mechanics""",
        "movement_combat": "Design combat that fits the custom setting while maintaining Daggerheart mechanics.",
        "movement_exploration": "Create exploration that showcases the unique aspects of this custom world.",
        "movement_social": "NPCs should embody the custom setting's unique culture and values.",
        "movement_puzzle": "Puzzles should reflect the logic and magic of the custom setting.",
    },
    DEFAULT_FRAME: {
        "scaffold": """You are an expert Daggerheart GM crafting engaging adventures.

Create adventures that:
1. Tell a complete, satisfying story in one session
2. Balance combat, exploration, and roleplay
3. Include meaningful choices for players
4. Feature memorable NPCs and locations
5. Build to an exciting climax""",
        "movement_combat": """Design balanced combat encounters that:
- Challenge without overwhelming
- Use interesting terrain and environmental features
- Give each party member a chance to shine
- Include varied enemy types and tactics
- Have clear victory conditions""",
        "movement_exploration": """Create exploration scenes that:
- Reward player curiosity
- Include environmental storytelling
- Offer multiple paths or approaches
- Hide secrets and treasures
- Build atmosphere and tension""",
        "movement_social": """Design social encounters that:
- Feature memorable NPCs with clear motivations
- Offer multiple solutions beyond combat
- Include opportunities for different character types
- Have meaningful consequences
- Advance the story naturally""",
        "movement_puzzle": """Create puzzles that:
- Have multiple valid solutions
- Can be solved through various approaches
- Don't halt progress completely if failed
- Integrate with the story and setting
- Scale with party capabilities""",
        "refinement": "You are an expert Daggerheart GM helping to refine adventure content.",
    },
}

SCAFFOLD_JSON_SHAPE = (
    '{"title":"","description":"","estimatedDuration":"","movements":'
    '[{"id":"","title":"","type":"combat|exploration|social|puzzle",'
    '"description":"","estimatedTime":"","orderIndex":0}]}'
)

MOVEMENT_JSON_SHAPE = (
    '{"title":"","description":"","type":"combat|exploration|social|puzzle","estimatedTime":""}'
)


@dataclass(frozen=True)
class ContentCandidate:
    """Ranked game content returned by the retrieval collaborator."""
    name: str
    content_type: str
    tier: int
    similarity: float = 0.0


@dataclass(frozen=True)
class AssembledPrompt:
    """Everything the LLM collaborator needs for one completion."""
    system_prompt: str
    user_prompt: str
    temperature: float
    category: ContentCategory
    response_format: Optional[str] = None


def resolve_system_prompt(frame: str, content_type: str) -> str:
    """Look up the system prompt for a frame and content type.

    Unknown frames use the default table. A content type the frame does not
    define comes from the default table, then from the frame's scaffold prompt.
    """
    frame_prompts = FRAME_PROMPTS.get(frame.strip().lower(), FRAME_PROMPTS[DEFAULT_FRAME])
    if content_type in frame_prompts:
        return frame_prompts[content_type]
    if content_type in FRAME_PROMPTS[DEFAULT_FRAME]:
        return FRAME_PROMPTS[DEFAULT_FRAME][content_type]
    return frame_prompts[SCAFFOLD_PROMPT]


class PromptAssembler:
    """Builds system/user prompts and picks the sampling temperature."""

    def __init__(self, policy: TemperaturePolicy = TEMPERATURE_POLICY):
        self.policy = policy

    def build_prompt(
        self,
        request: GenerationRequest,
        candidates: Sequence[ContentCandidate] = ()
    ) -> AssembledPrompt:
        """Assemble the prompt for a generation request.

        Args:
            request: Any of the four generation requests
            candidates: Retrieved content to offer an expansion prompt

        Returns:
            AssembledPrompt with temperature and response format resolved

        Raises:
            TypeError: If request is not a known generation request
        """
        if isinstance(request, ScaffoldRequest):
            return self._scaffold_prompt(request)
        if isinstance(request, SceneExpansionRequest):
            return self._expansion_prompt(request, candidates)
        if isinstance(request, RefinementRequest):
            return self._refinement_prompt(request)
        if isinstance(request, MovementRegenerationRequest):
            return self._movement_regeneration_prompt(request)
        raise TypeError(f"Unsupported request type: {type(request).__name__}")

    def _scaffold_prompt(self, request: ScaffoldRequest) -> AssembledPrompt:
        adventure = request.adventure
        custom_frame = (
            f"\nCustom Frame: {adventure.custom_frame_description}"
            if adventure.custom_frame_description else ""
        )
        user_prompt = (
            "Create a Daggerheart adventure:\n"
            f"Frame: {adventure.frame}{custom_frame}\n"
            f"Focus: {adventure.focus}\n"
            f"Party: {adventure.party_size} level {adventure.party_level}\n"
            f"Difficulty: {adventure.difficulty.value}, Stakes: {adventure.stakes.value}\n"
            "\n"
            "Generate: title, description, 3-5 movements, 3-4hr duration\n"
            f"JSON: {SCAFFOLD_JSON_SHAPE}"
        )
        return self._assemble(
            resolve_system_prompt(adventure.frame, SCAFFOLD_PROMPT),
            user_prompt,
            ContentCategory.SCAFFOLD_GENERATION,
            JSON_RESPONSE_FORMAT
        )

    def _expansion_prompt(
        self,
        request: SceneExpansionRequest,
        candidates: Sequence[ContentCandidate]
    ) -> AssembledPrompt:
        adventure = request.adventure
        scene = request.scene
        lines = [
            f"Expand: {scene.title} ({scene.scene_type.value})",
            f"Content: {scene.content}",
            f"Frame: {adventure.frame}, Focus: {adventure.focus}",
            f"Party: {adventure.party_size} lvl {adventure.party_level} (tier {adventure.tier})",
        ]
        if request.previous_scene is not None:
            lines.append(f"Prev: {request.previous_scene.title}")
        if request.next_scene is not None:
            lines.append(f"Next: {request.next_scene.title}")
        if candidates:
            lines.append("Available content (use where it fits):")
            lines.extend(
                f"- {c.name} ({c.content_type}, tier {c.tier})" for c in candidates
            )
        lines.append("Include: vivid descriptions, objectives, mechanics, GM notes, transitions.")
        return self._assemble(
            resolve_system_prompt(adventure.frame, f"movement_{scene.scene_type.value}"),
            "\n".join(lines),
            category_for_scene_type(scene.scene_type)
        )

    def _refinement_prompt(self, request: RefinementRequest) -> AssembledPrompt:
        scene = request.scene
        category = category_for_scene_type(scene.scene_type)
        if category is ContentCategory.SCAFFOLD_GENERATION:
            category = ContentCategory.DESCRIPTIONS
        user_prompt = (
            f"Original content: {scene.content}\n\n"
            f"Refinement instruction: {request.instruction}\n\n"
            f"Context: {scene.title} ({scene.scene_type.value}) "
            f"in frame {request.adventure.frame}"
        )
        return self._assemble(
            resolve_system_prompt(request.adventure.frame, REFINEMENT_PROMPT),
            user_prompt,
            category
        )

    def _movement_regeneration_prompt(self, request: MovementRegenerationRequest) -> AssembledPrompt:
        adventure = request.adventure
        movement = request.movement
        locked = ""
        if request.locked_movements:
            locked = "\nLocked: " + ", ".join(
                f"{m.title} ({m.scene_type.value})" for m in request.locked_movements
            )
        user_prompt = (
            f"Regenerate: {movement.title} ({movement.scene_type.value})\n"
            f"Content: {movement.content}\n"
            f"Frame: {adventure.frame}, Focus: {adventure.focus}\n"
            f"Party: {adventure.party_size} lvl {adventure.party_level}, "
            f"{adventure.difficulty.value}, {adventure.stakes.value}{locked}\n"
            "NEW version: maintain type, fit locked, vary from original, appropriate difficulty.\n"
            f"JSON: {MOVEMENT_JSON_SHAPE}"
        )
        return self._assemble(
            resolve_system_prompt(adventure.frame, SCAFFOLD_PROMPT),
            user_prompt,
            ContentCategory.SCAFFOLD_GENERATION,
            JSON_RESPONSE_FORMAT
        )

    def _assemble(
        self,
        system_prompt: str,
        user_prompt: str,
        category: ContentCategory,
        response_format: Optional[str] = None
    ) -> AssembledPrompt:
        return AssembledPrompt(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=self.policy.temperature_for(category),
            category=category,
            response_format=response_format
        )
