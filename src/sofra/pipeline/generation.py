"""
Sofra - Two-stage generation pipeline.

Stage 1 decides the menu (main + side + extra). Stage 2 expands each
slot into a full recipe. Each stage validates the reply against its
closed schema and the domain rules, and returns a tagged Result:

- no JSON in the reply → PARSE_FAILURE
- JSON that breaks the schema or a domain rule → SCHEMA_VIOLATION
- backend unreachable → UPSTREAM_UNAVAILABLE

Parse and schema failures are not retried here.
"""

import logging
import re
from dataclasses import dataclass, field

from sofra.core.result import Err, ErrorKind, Ok, Result
from sofra.llm.client import BackendUnavailable, Completion, TextBackend, closed_json_schema
from sofra.models.menu import (
    GenerationRequest,
    MenuBundle,
    MenuDecision,
    MenuRecipe,
    RecipeExpansion,
)
from sofra.observability.langsmith import estimate_cost, trace_llm_call
from sofra.pipeline.extraction import parse_reply
from sofra.pipeline.prompts import (
    allowed_equipment,
    build_menu_decision_prompts,
    build_recipe_expansion_prompts,
)

logger = logging.getLogger(__name__)

MENU_DECISION_NODE = "menu_decision"
RECIPE_EXPANSION_NODE = "recipe_expansion"


@dataclass
class Usage:
    """Token usage accumulated across stages."""

    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    def add(self, completion: Completion) -> None:
        self.model = completion.model or self.model
        self.input_tokens += completion.input_tokens
        self.output_tokens += completion.output_tokens
        self.cost_usd += estimate_cost(completion.model, completion.input_tokens, completion.output_tokens)


@dataclass
class GeneratedBundle:
    """A freshly generated bundle plus bookkeeping."""

    bundle: MenuBundle
    usage: Usage = field(default_factory=Usage)

    @property
    def model(self) -> str:
        return self.usage.model

    @property
    def cost_usd(self) -> float:
        return self.usage.cost_usd


def _mentions(ingredient: str, terms: tuple[str, ...]) -> str | None:
    name = ingredient.strip().lower()
    for term in terms:
        term = term.strip().lower()
        if not term:
            continue
        stem = term[:-1] if term.endswith("s") and len(term) > 3 else term
        if re.search(rf"\b{re.escape(stem)}(?:s|es)?\b", name):
            return term
    return None


def check_decision(decision: MenuDecision, request: GenerationRequest) -> str | None:
    """Domain rules for Stage 1. Returns a violation message or None."""
    if decision.meal_type != request.meal_type:
        return f"meal type {decision.meal_type.value} does not match requested {request.meal_type.value}"
    if decision.total_time_minutes > request.max_total_minutes:
        return f"total time {decision.total_time_minutes} exceeds ceiling {request.max_total_minutes}"
    return None


def check_recipes(expansion: RecipeExpansion, decision: MenuDecision, request: GenerationRequest) -> str | None:
    """Domain rules for Stage 2. Returns a violation message or None."""
    if expansion.meal_type != request.meal_type:
        return f"meal type {expansion.meal_type.value} does not match requested {request.meal_type.value}"
    if expansion.total_time_minutes > request.max_total_minutes:
        return f"total time {expansion.total_time_minutes} exceeds ceiling {request.max_total_minutes}"

    slot_courses = [course for course, _ in decision.slots()]
    recipe_courses = [recipe.course for recipe in expansion.recipes]
    for course in recipe_courses:
        if course not in slot_courses:
            return f"recipe course {course.value} is not a slot of the menu"
    for course in slot_courses:
        if recipe_courses.count(course) != 1:
            return f"slot {course.value} needs exactly one recipe, got {recipe_courses.count(course)}"

    equipment = set(allowed_equipment(request))
    forbidden = request.allergies + request.avoid_ingredients

    for recipe in expansion.recipes:
        if recipe.servings != request.household_size:
            return f"{recipe.name}: servings {recipe.servings} != household size {request.household_size}"
        unlisted = [e for e in recipe.equipment if e.strip().lower() not in equipment]
        if unlisted:
            return f"{recipe.name}: uses unlisted equipment {unlisted}"
        for ingredient in recipe.ingredients:
            hit = _mentions(ingredient.name, forbidden)
            if hit:
                return f"{recipe.name}: ingredient '{ingredient.name}' matches excluded '{hit}'"

    return None


def _order_by_slots(recipes: list[MenuRecipe], decision: MenuDecision) -> list[MenuRecipe]:
    order = {course: index for index, (course, _) in enumerate(decision.slots())}
    return sorted(recipes, key=lambda r: order.get(r.course, len(order)))


class GenerationPipeline:
    """Runs Menu Decision then Recipe Expansion against a TextBackend."""

    def __init__(self, backend: TextBackend):
        self.backend = backend
        self._decision_schema = closed_json_schema(MenuDecision)
        self._expansion_schema = closed_json_schema(RecipeExpansion)

    async def decide_menu(self, request: GenerationRequest, usage: Usage | None = None) -> Result[MenuDecision]:
        """Stage 1: compose main + side + extra for the request."""
        system_prompt, user_prompt = build_menu_decision_prompts(request)

        try:
            completion = await self.backend.complete(
                node=MENU_DECISION_NODE,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                json_schema=self._decision_schema,
                schema_name="menu_decision",
            )
        except BackendUnavailable as e:
            return Err(ErrorKind.UPSTREAM_UNAVAILABLE, str(e))

        if usage is not None:
            usage.add(completion)

        parsed = parse_reply(completion.text, MenuDecision)
        if isinstance(parsed, Err):
            logger.warning(f"Menu decision rejected for {request.date} {request.meal_type.value}: {parsed}")
            return parsed

        violation = check_decision(parsed.value, request)
        if violation:
            logger.warning(f"Menu decision rejected for {request.date} {request.meal_type.value}: {violation}")
            return Err(ErrorKind.SCHEMA_VIOLATION, violation)

        return parsed

    async def expand_recipes(
        self,
        decision: MenuDecision,
        request: GenerationRequest,
        usage: Usage | None = None,
    ) -> Result[MenuBundle]:
        """Stage 2: one full recipe per slot of the decision."""
        system_prompt, user_prompt = build_recipe_expansion_prompts(decision, request)

        try:
            completion = await self.backend.complete(
                node=RECIPE_EXPANSION_NODE,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                json_schema=self._expansion_schema,
                schema_name="recipe_expansion",
            )
        except BackendUnavailable as e:
            return Err(ErrorKind.UPSTREAM_UNAVAILABLE, str(e))

        if usage is not None:
            usage.add(completion)

        parsed = parse_reply(completion.text, RecipeExpansion)
        if isinstance(parsed, Err):
            logger.warning(f"Recipe expansion rejected for {request.date} {request.meal_type.value}: {parsed}")
            return parsed

        violation = check_recipes(parsed.value, decision, request)
        if violation:
            logger.warning(f"Recipe expansion rejected for {request.date} {request.meal_type.value}: {violation}")
            return Err(ErrorKind.SCHEMA_VIOLATION, violation)

        return Ok(MenuBundle(decision=decision, recipes=_order_by_slots(parsed.value.recipes, decision)))

    async def generate_bundle(self, request: GenerationRequest) -> Result[GeneratedBundle]:
        """Run both stages for one meal."""
        usage = Usage()
        inputs = {"date": request.date.isoformat(), "meal_type": request.meal_type.value}

        async with trace_llm_call(MENU_DECISION_NODE, inputs=inputs) as run:
            decision = await self.decide_menu(request, usage)
            run.end(outputs={"ok": decision.ok, "detail": str(decision) if isinstance(decision, Err) else ""})
        if isinstance(decision, Err):
            return decision

        async with trace_llm_call(RECIPE_EXPANSION_NODE, inputs=inputs) as run:
            bundle = await self.expand_recipes(decision.value, request, usage)
            run.end(outputs={"ok": bundle.ok, "detail": str(bundle) if isinstance(bundle, Err) else ""})
        if isinstance(bundle, Err):
            return bundle

        logger.info(
            f"Generated {request.meal_type.value} for {request.date}: "
            f"{', '.join(decision.value.dish_names())} (${usage.cost_usd:.4f})"
        )
        return Ok(GeneratedBundle(bundle=bundle.value, usage=usage))
