"""
Sampling temperature policy.

Single table mapping content categories to sampling temperatures. Every
generation path resolves its temperature here instead of carrying its own
constant.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union


class ContentCategory(Enum):
    """Closed set of content categories with a dedicated temperature."""
    SCAFFOLD_GENERATION = "scaffold_generation"
    COMBAT_ENCOUNTERS = "combat_encounters"
    NPC_DIALOGUE = "npc_dialogue"
    DESCRIPTIONS = "descriptions"
    MECHANICAL_ELEMENTS = "mechanical_elements"


@dataclass(frozen=True)
class TemperaturePolicy:
    """Fixed temperature table; lower values for mechanical precision."""
    temperatures: Dict[ContentCategory, float]
    fallback: ContentCategory = ContentCategory.SCAFFOLD_GENERATION

    def __post_init__(self):
        """Validate every category has a temperature in [0, 2]."""
        missing = set(ContentCategory) - set(self.temperatures)
        if missing:
            raise ValueError(f"Missing temperatures for: {sorted(c.value for c in missing)}")
        for category, value in self.temperatures.items():
            if not 0.0 <= value <= 2.0:
                raise ValueError(f"Temperature for {category.value} must be within [0, 2]")

    def temperature_for(self, category: Union[ContentCategory, str]) -> float:
        """Resolve the temperature for a category.

        Unrecognized categories, given either as an unknown string or as a
        value outside the table, use the scaffold-generation temperature.
        """
        if isinstance(category, str):
            try:
                category = ContentCategory(category)
            except ValueError:
                category = self.fallback
        return self.temperatures.get(category, self.temperatures[self.fallback])


TEMPERATURE_POLICY = TemperaturePolicy({
    ContentCategory.SCAFFOLD_GENERATION: 0.75,
    ContentCategory.COMBAT_ENCOUNTERS: 0.5,
    ContentCategory.NPC_DIALOGUE: 0.9,
    ContentCategory.DESCRIPTIONS: 0.8,
    ContentCategory.MECHANICAL_ELEMENTS: 0.3,
})

_SCENE_TYPE_CATEGORIES = {
    "combat": ContentCategory.COMBAT_ENCOUNTERS,
    "social": ContentCategory.NPC_DIALOGUE,
    "exploration": ContentCategory.DESCRIPTIONS,
    "puzzle": ContentCategory.DESCRIPTIONS,
}


def category_for_scene_type(scene_type) -> ContentCategory:
    """Map a scene type (enum or string) to its content category.

    Anything that is not a known scene type is scaffold-level.
    """
    key = str(getattr(scene_type, "value", scene_type)).lower()
    return _SCENE_TYPE_CATEGORIES.get(key, ContentCategory.SCAFFOLD_GENERATION)


def temperature_for(category: Union[ContentCategory, str]) -> float:
    """Resolve a temperature from the default policy."""
    return TEMPERATURE_POLICY.temperature_for(category)
