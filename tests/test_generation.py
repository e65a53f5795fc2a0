"""
Tests for the two-stage generation pipeline and its prompts.
"""

import json

import pytest
from conftest import FakeBackend, decision_payload, expansion_payload, recipe_payload, run, unavailable

from sofra.core.result import Err, ErrorKind
from sofra.llm.client import closed_json_schema
from sofra.models.menu import Course, MenuDecision, RecipeExpansion
from sofra.pipeline.generation import GenerationPipeline
from sofra.pipeline.prompts import (
    allowed_equipment,
    build_menu_decision_prompts,
    build_recipe_expansion_prompts,
    course_policy_lines,
    seasonality_hint,
)
from sofra.preferences.requests import build_generation_request


@pytest.fixture
def request_(snapshot, tuesday):
    return build_generation_request(snapshot, tuesday, "dinner")


def _expansion_reply(decision: dict, **overrides) -> str:
    return json.dumps(expansion_payload(decision, servings=2, **overrides))


class TestGenerateBundle:

    def test_happy_path(self, request_):
        pipeline = GenerationPipeline(FakeBackend())
        result = run(pipeline.generate_bundle(request_))

        assert result.ok
        generated = result.value
        assert generated.bundle.is_complete()
        assert [r.course for r in generated.bundle.recipes] == [Course.MAIN, Course.SIDE, Course.SOUP]
        assert all(r.servings == 2 for r in generated.bundle.recipes)
        assert generated.usage.input_tokens == 2000
        assert generated.usage.output_tokens == 1000
        assert generated.cost_usd > 0
        assert generated.model == "gpt-4.1-mini"

    def test_stage_two_sees_stage_one_menu(self, request_):
        backend = FakeBackend()
        run(GenerationPipeline(backend).generate_bundle(request_))
        assert [node for node, _, _ in backend.calls] == ["menu_decision", "recipe_expansion"]

    def test_recipes_come_back_in_slot_order(self, request_):
        decision = decision_payload()
        expansion = expansion_payload(decision, servings=2)
        expansion["recipes"].reverse()
        backend = FakeBackend(replies={
            "menu_decision": [json.dumps(decision)],
            "recipe_expansion": [json.dumps(expansion)],
        })
        result = run(GenerationPipeline(backend).generate_bundle(request_))
        assert [r.course for r in result.value.bundle.recipes] == [Course.MAIN, Course.SIDE, Course.SOUP]


class TestMenuDecisionRules:

    def test_over_time_ceiling(self, request_):
        backend = FakeBackend(replies={"menu_decision": [json.dumps(decision_payload(total_time_minutes=90))]})
        result = run(GenerationPipeline(backend).generate_bundle(request_))

        assert isinstance(result, Err)
        assert result.kind == ErrorKind.SCHEMA_VIOLATION
        assert "exceeds ceiling 45" in result.detail
        assert backend.calls_for("recipe_expansion") == []

    def test_wrong_meal_type(self, request_):
        backend = FakeBackend(replies={"menu_decision": [json.dumps(decision_payload("lunch"))]})
        result = run(GenerationPipeline(backend).decide_menu(request_))
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.SCHEMA_VIOLATION

    def test_prose_reply(self, request_):
        backend = FakeBackend(replies={"menu_decision": ["I'd suggest a nice stew tonight."]})
        result = run(GenerationPipeline(backend).generate_bundle(request_))
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.PARSE_FAILURE

    def test_backend_down(self, request_):
        backend = FakeBackend(failures={"dinner": unavailable()})
        result = run(GenerationPipeline(backend).generate_bundle(request_))
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.UPSTREAM_UNAVAILABLE


class TestRecipeExpansionRules:

    def _expand(self, request_, expansion_text: str):
        decision = MenuDecision.model_validate(decision_payload())
        backend = FakeBackend(replies={"recipe_expansion": [expansion_text]})
        return run(GenerationPipeline(backend).expand_recipes(decision, request_))

    def test_valid_expansion(self, request_):
        result = self._expand(request_, _expansion_reply(decision_payload()))
        assert result.ok
        assert result.value.is_complete()

    def test_wrong_servings(self, request_):
        text = json.dumps(expansion_payload(decision_payload(), servings=4))
        result = self._expand(request_, text)
        assert isinstance(result, Err)
        assert "household size 2" in result.detail

    def test_allergen_ingredient(self, request_):
        text = _expansion_reply(decision_payload(), ingredients=["chicken thigh", "peanut oil"])
        result = self._expand(request_, text)
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.SCHEMA_VIOLATION
        assert "peanut oil" in result.detail

    def test_avoid_list_ingredient(self, snapshot, tuesday):
        request_ = build_generation_request(snapshot, tuesday, "dinner", avoid_ingredients=["Coriander"])
        text = _expansion_reply(decision_payload(), ingredients=["chicken", "fresh coriander"])
        result = self._expand(request_, text)
        assert isinstance(result, Err)
        assert "coriander" in result.detail

    def test_excluded_terms_match_whole_words(self, snapshot, tuesday):
        request_ = build_generation_request(snapshot, tuesday, "dinner", avoid_ingredients=["nut", "fish"])
        text = _expansion_reply(decision_payload(), ingredients=["coconut milk", "grated nutmeg", "shellfish stock"])
        assert self._expand(request_, text).ok

    def test_plural_avoid_term_matches_singular(self, snapshot, tuesday):
        request_ = build_generation_request(snapshot, tuesday, "dinner", avoid_ingredients=["Walnuts"])
        text = _expansion_reply(decision_payload(), ingredients=["chopped walnut", "bulgur"])
        result = self._expand(request_, text)
        assert isinstance(result, Err)
        assert "walnuts" in result.detail

    def test_unlisted_equipment(self, request_):
        text = _expansion_reply(decision_payload(), equipment=["sous vide circulator"])
        result = self._expand(request_, text)
        assert isinstance(result, Err)
        assert "unlisted equipment" in result.detail

    def test_user_equipment_allowed(self, request_):
        text = _expansion_reply(decision_payload(), equipment=["Air Fryer", "oven", "knife"])
        assert self._expand(request_, text).ok

    def test_duplicate_course(self, request_):
        decision = decision_payload()
        expansion = expansion_payload(decision, servings=2)
        expansion["recipes"][1] = recipe_payload("main", "Another Main", servings=2)
        result = self._expand(request_, json.dumps(expansion))
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.SCHEMA_VIOLATION

    def test_course_outside_menu(self, request_):
        decision = decision_payload()
        expansion = expansion_payload(decision, servings=2)
        expansion["recipes"][2] = recipe_payload("dessert", "Sütlaç", servings=2)
        result = self._expand(request_, json.dumps(expansion))
        assert isinstance(result, Err)
        assert "dessert" in result.detail

    def test_four_recipes_rejected_by_schema(self, request_):
        decision = decision_payload()
        expansion = expansion_payload(decision, servings=2)
        expansion["recipes"].append(recipe_payload("salad", "Çoban Salatası", servings=2))
        result = self._expand(request_, json.dumps(expansion))
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.SCHEMA_VIOLATION


class TestPrompts:

    def test_menu_prompt_carries_constraints(self, request_):
        system, user = build_menu_decision_prompts(request_)
        assert "exactly three dishes" in system
        assert "must not exceed 45 minutes" in user
        assert "ALLERGIES" in user and "peanuts" in user
        assert "halal" in user
        assert "protein" in user  # high-activity Tuesday

    def test_avoid_dishes_listed(self, snapshot, tuesday):
        request_ = build_generation_request(snapshot, tuesday, "dinner", avoid_dish_names=["Tavuk Sote"])
        _, user = build_menu_decision_prompts(request_)
        assert "Tavuk Sote" in user

    def test_expansion_prompt_carries_decision(self, request_):
        decision = MenuDecision.model_validate(decision_payload())
        _, user = build_recipe_expansion_prompts(decision, request_)
        assert "Mercimek Çorbası" in user
        assert "servings must be exactly 2" in user
        assert "air fryer" in user

    def test_default_course_policy_is_turkish(self):
        lines = course_policy_lines(())
        assert "Turkish" in lines[0]

    def test_allowed_equipment_dedupes(self, request_):
        equipment = allowed_equipment(request_)
        assert equipment[:4] == ["stove", "pot", "pan", "oven"]
        assert "air fryer" in equipment
        assert len(equipment) == len(set(equipment))

    def test_seasonality(self, tuesday):
        assert seasonality_hint(tuesday).startswith("Spring")


class TestClosedSchema:

    def test_objects_are_closed_and_fully_required(self):
        schema = closed_json_schema(RecipeExpansion)

        def _objects(node):
            if isinstance(node, dict):
                if node.get("type") == "object" and "properties" in node:
                    yield node
                for value in node.values():
                    yield from _objects(value)
            elif isinstance(node, list):
                for value in node:
                    yield from _objects(value)

        objects = list(_objects(schema))
        assert objects
        for obj in objects:
            assert obj["additionalProperties"] is False
            assert set(obj["required"]) == set(obj["properties"])

    def test_camel_case_keys(self):
        schema = closed_json_schema(MenuDecision)
        assert "totalTimeMinutes" in schema["properties"]
        assert "title" not in schema
