"""
Sofra - Prompt builders for the two generation stages.

Stage 1 (menu decision) composes a three-slot menu; Stage 2 (recipe
expansion) writes a full recipe for each slot. Both prompts restate the
hard constraints: allergies, dietary restrictions, avoid-lists.
"""

import json
from datetime import date

from sofra.models.menu import GenerationRequest, MenuDecision
from sofra.models.preferences import DayContext, MealType

# Always available in a home kitchen, plus whatever the user listed
DEFAULT_EQUIPMENT = ("stove", "pot", "pan", "oven")
HAND_TOOLS = (
    "knife",
    "cutting board",
    "bowl",
    "mixing bowl",
    "spoon",
    "wooden spoon",
    "spatula",
    "whisk",
    "grater",
    "colander",
    "measuring cup",
    "baking tray",
)

CUISINE_FAMILIES: dict[str, tuple[str, ...]] = {
    "turkish": ("turkish", "anatolian", "ottoman", "aegean", "black sea"),
    "mediterranean": ("mediterranean", "greek", "italian", "spanish", "provencal"),
    "middle_eastern": ("middle eastern", "levantine", "lebanese", "persian", "arabic"),
    "east_asian": ("asian", "east asian", "chinese", "japanese", "korean", "thai", "vietnamese"),
    "european": ("european", "french", "german", "british", "nordic"),
}

COURSE_POLICY: dict[str, str] = {
    "turkish": (
        "Turkish/Anatolian table: the extra is usually a soup (mercimek, ezogelin, yayla) "
        "or a cold meze; the side leans on pilaf (rice or bulgur), yoghurt or a seasonal salad."
    ),
    "mediterranean": (
        "Mediterranean table: favour a salad or meze as the extra; the side is bread, "
        "grains or roasted vegetables."
    ),
    "middle_eastern": (
        "Middle Eastern table: meze-style extras (hummus, muhammara, tabbouleh); "
        "the side is rice, bulgur or flatbread."
    ),
    "east_asian": (
        "East Asian table: favour a light soup as the extra; the side is rice or noodles."
    ),
    "european": (
        "European table: the extra is a salad, soup or a simple dessert; the side is "
        "potatoes, bread or greens."
    ),
    "default": (
        "Build a coherent table: the side and extra should complement the main in "
        "texture and weight, never repeat its protein."
    ),
}

SEASONALITY: dict[str, str] = {
    "winter": "Winter: root vegetables (celeriac, carrots), pulses and winter greens.",
    "spring": "Spring: artichokes, fresh peas, asparagus and green herbs.",
    "summer": "Summer: tomatoes, peppers, courgettes, aubergines and fresh fruit.",
    "autumn": "Autumn: squash, mushrooms, root vegetables and pulses.",
}


def seasonality_hint(day: date) -> str:
    month = day.month
    if month in (12, 1, 2):
        return SEASONALITY["winter"]
    if month in (3, 4, 5):
        return SEASONALITY["spring"]
    if month in (6, 7, 8):
        return SEASONALITY["summer"]
    return SEASONALITY["autumn"]


def cuisine_family(cuisine: str) -> str:
    name = cuisine.strip().lower()
    for family, members in CUISINE_FAMILIES.items():
        if any(member in name for member in members):
            return family
    return "default"


def course_policy_lines(cuisines: tuple[str, ...] | list[str]) -> list[str]:
    families: list[str] = []
    for cuisine in cuisines:
        family = cuisine_family(cuisine)
        if family not in families:
            families.append(family)
    if not families:
        families = ["turkish", "default"]
    return [COURSE_POLICY[f] for f in families]


def allowed_equipment(request: GenerationRequest) -> list[str]:
    """Equipment a recipe may list: basics, hand tools and the user's own."""
    items = [*DEFAULT_EQUIPMENT, *HAND_TOOLS, *request.equipment]
    seen: list[str] = []
    for item in items:
        key = item.strip().lower()
        if key and key not in seen:
            seen.append(key)
    return seen


def routine_guidance(request: GenerationRequest) -> list[str]:
    """How the day's context should weight the menu."""
    routine = request.routine
    meal = request.meal_type
    lines: list[str] = [f"Day context: {routine.type.value}"]

    if routine.type == DayContext.COMMUTE:
        if meal == MealType.LUNCH or routine.portable_meal_needed:
            lines.append("Away from home: dishes must travel well in a lunchbox and taste good at room temperature or reheated.")
        if meal == MealType.DINNER:
            lines.append("Evening after a commute: keep it quick or balanced, avoid long active cooking.")
        if meal == MealType.BREAKFAST:
            lines.append("Breakfast before leaving: fast, minimal washing up.")

    elif routine.type == DayContext.HIGH_ACTIVITY:
        lines.append("Training day: the main must be higher in protein (30-40 g per serving) with carbohydrates for recovery.")
        if routine.workout_time != "none":
            lines.append(f"Workout: {routine.workout_time}.")
        if routine.workout_time == "evening" and meal == MealType.DINNER:
            lines.append("Post-workout dinner: substantial but not heavy.")

    elif routine.type == DayContext.LOW_CONSTRAINT:
        lines.append("At home with time: a more elaborate structure is welcome (slow braise, homemade side, baked extra).")

    return lines


def hard_constraint_lines(request: GenerationRequest) -> list[str]:
    lines = []
    if request.allergies:
        lines.append(f"ALLERGIES (never use, in any form or derivative): {', '.join(request.allergies)}")
    else:
        lines.append("Allergies: none")
    if request.dietary_restrictions:
        lines.append(f"Dietary restrictions (must comply): {', '.join(request.dietary_restrictions)}")
    if request.avoid_ingredients:
        lines.append(f"Do not use these ingredients: {', '.join(request.avoid_ingredients)}")
    if request.avoid_dish_names:
        lines.append(f"Already planned this week, do not repeat: {', '.join(request.avoid_dish_names)}")
    return lines


def _time_ceiling(request: GenerationRequest) -> str:
    return f"Total time for the whole menu must not exceed {request.max_total_minutes} minutes."


MENU_DECISION_SYSTEM = """You are a meal planner composing one meal for one household.

Compose exactly three dishes:
- main: the centre of the meal
- side: one accompaniment
- extra: exactly one of soup, salad, meze, dessert or pastry

Never add a fourth dish. Respect every hard constraint; allergies are a
safety requirement. Explain in `reasoning` why this menu suits this
person on this day. Reply only with JSON matching the provided schema."""


def build_menu_decision_prompts(request: GenerationRequest) -> tuple[str, str]:
    """System and user prompt for Stage 1."""
    cuisines = ", ".join(request.cuisine_preferences) or "no preference (default to Turkish home cooking)"
    season = request.weekly_context.seasonality_hint if request.weekly_context else ""

    sections = [
        f"Plan {request.meal_type.value} for {request.date.isoformat()} ({request.day_of_week}).",
        "## Household\n"
        f"- Servings: {request.household_size}\n"
        f"- Cuisines: {cuisines}\n"
        f"- Time preference: {request.time_preference}\n"
        f"- Skill level: {request.skill_level}",
        "## Course policy\n" + "\n".join(f"- {line}" for line in course_policy_lines(request.cuisine_preferences)),
        "## Day\n" + "\n".join(f"- {line}" for line in routine_guidance(request)),
        "## Hard constraints\n" + "\n".join(f"- {line}" for line in hard_constraint_lines(request)),
        "## Time\n- " + _time_ceiling(request),
        "## Season\n- " + (season or seasonality_hint(request.date)),
    ]
    if request.pantry:
        sections.append(f"## Pantry\n- Prefer using: {', '.join(request.pantry)}")

    return MENU_DECISION_SYSTEM, "\n\n".join(sections)


RECIPE_EXPANSION_SYSTEM = """You are a recipe writer expanding a fixed menu into full recipes.

Write exactly one recipe per menu slot and keep the dish names as given.
Every recipe needs at least 2 ingredients with amounts and units, at
least 3 numbered steps with durations, the equipment it uses, and a
nutrition breakdown per 100 g, per serving and in total. Respect every
hard constraint; allergies are a safety requirement. Reply only with
JSON matching the provided schema."""


_SKILL_GRANULARITY = {
    "beginner": "Beginner: short, very explicit steps; explain techniques and doneness cues.",
    "intermediate": "Intermediate: standard recipe detail.",
    "expert": "Expert: concise steps; techniques can be named without explanation.",
}


def build_recipe_expansion_prompts(decision: MenuDecision, request: GenerationRequest) -> tuple[str, str]:
    """System and user prompt for Stage 2. The decision is carried verbatim."""
    decision_json = json.dumps(decision.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2)
    equipment = ", ".join(allowed_equipment(request))

    sections = [
        f"Expand this {request.meal_type.value} menu for {request.date.isoformat()} ({request.day_of_week}):",
        f"```json\n{decision_json}\n```",
        "## Rules\n"
        f"- One recipe per slot: main, side and {decision.extra.type}; use those exact course values\n"
        f"- servings must be exactly {request.household_size}\n"
        f"- {_SKILL_GRANULARITY.get(request.skill_level, _SKILL_GRANULARITY['intermediate'])}\n"
        f"- Only list equipment from: {equipment}\n"
        f"- {_time_ceiling(request)}",
        "## Hard constraints\n" + "\n".join(f"- {line}" for line in hard_constraint_lines(request)),
    ]
    if request.pantry:
        sections.append(f"## Pantry\n- Prefer these ingredients where they fit: {', '.join(request.pantry)}")

    return RECIPE_EXPANSION_SYSTEM, "\n\n".join(sections)
