"""
DAPR (Draw-A-Person-in-the-Rain) scoring over detected sketch objects.

Fixed rule table after Lack (1996): 16 stress items and 19 resource items,
each scored 0/1 from object counts, pairwise box relations or figure size.
total = resource - stress. Items the detector cannot measure (faces,
clothing, expression, ...) stay in the table and always score 0.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sketch_kit.types import Detection

from .geometry import center, distance, figure_height_inches, largest, overlaps

RULE_TABLE_VERSION = 1
EXCESS_RAIN_THRESHOLD = 5
FIGURE_SMALL_INCHES = 2.0
FIGURE_LARGE_INCHES = 6.0
CENTERED_FRACTION = 0.25
LIGHTNING_HIT_FRACTION = 0.5


class ItemCategory(str, Enum):
    STRESS = "stress"
    RESOURCE = "resource"


class ItemMethod(str, Enum):
    FREQUENCY = "frequency"
    DISTANCE = "distance"
    AREA = "area"


class InterpretationBand(str, Enum):
    ADEQUATE = "ADEQUATE"
    RESOURCES_EXCEED = "RESOURCES_EXCEED"
    BALANCED = "BALANCED"
    STRESS_EXCEEDS = "STRESS_EXCEEDS"
    STRESS_SIGNIFICANT = "STRESS_SIGNIFICANT"


INTERPRETATIONS: Dict[InterpretationBand, str] = {
    InterpretationBand.ADEQUATE: "Adequate resources, good coping ability",
    InterpretationBand.RESOURCES_EXCEED: "Resources slightly exceed stress",
    InterpretationBand.BALANCED: "Stress and resources roughly balanced",
    InterpretationBand.STRESS_EXCEEDS: "Stress slightly exceeds resources",
    InterpretationBand.STRESS_SIGNIFICANT: "Stress significantly exceeds resources, further assessment recommended",
}


def interpretation_band(total_score: float) -> InterpretationBand:
    if total_score >= 4:
        return InterpretationBand.ADEQUATE
    if total_score >= 1:
        return InterpretationBand.RESOURCES_EXCEED
    if total_score >= -1:
        return InterpretationBand.BALANCED
    if total_score >= -4:
        return InterpretationBand.STRESS_EXCEEDS
    return InterpretationBand.STRESS_SIGNIFICANT


def get_interpretation(total_score: float) -> str:
    return INTERPRETATIONS[interpretation_band(total_score)]


@dataclass(frozen=True)
class Scene:
    """
    Detections grouped by category plus the image size.
    """

    image_width: float
    image_height: float
    by_category: Dict[str, Tuple[Detection, ...]] = field(default_factory=dict)

    @classmethod
    def build(cls, detections: Iterable[Detection], image_width: float, image_height: float) -> "Scene":
        groups: Dict[str, List[Detection]] = {}
        for d in detections:
            groups.setdefault(d.category, []).append(d)
        return cls(
            image_width=float(image_width or 0),
            image_height=float(image_height or 0),
            by_category={k: tuple(v) for k, v in groups.items()},
        )

    def of(self, category: str) -> Tuple[Detection, ...]:
        return self.by_category.get(category, ())

    def count(self, category: str) -> int:
        return len(self.of(category))


# A rule returns a description of what it found, or None when not triggered.
Rule = Callable[[Scene], Optional[str]]


def _any_pair(a: Sequence[Detection], b: Sequence[Detection], pred: Callable[[Detection, Detection], bool]) -> bool:
    return any(pred(x, y) for x in a for y in b)


def _no_rain(s: Scene) -> Optional[str]:
    return "No rain drawn" if s.count("rain") == 0 else None


def _excess_rain(s: Scene) -> Optional[str]:
    n = s.count("rain")
    return f"Excessive rain ({n} objects)" if n > EXCESS_RAIN_THRESHOLD else None


def _rain_hitting_person(s: Scene) -> Optional[str]:
    if _any_pair(s.of("person"), s.of("rain"), overlaps):
        return "Rain overlaps with person"
    return None


def _lightning(s: Scene) -> Optional[str]:
    return "Lightning present" if s.count("lightning") > 0 else None


def _lightning_hits(s: Scene) -> Optional[str]:
    def near(person: Detection, bolt: Detection) -> bool:
        return distance(person, bolt) < max(person.height, bolt.height) * LIGHTNING_HIT_FRACTION

    if _any_pair(s.of("person"), s.of("lightning"), near):
        return "Lightning near person"
    return None


def _puddles(s: Scene) -> Optional[str]:
    n = s.count("puddle")
    return f"Puddle(s) present ({n})" if n > 0 else None


def _standing_in_puddle(s: Scene) -> Optional[str]:
    if _any_pair(s.of("person"), s.of("puddle"), overlaps):
        return "Person standing in puddle"
    return None


def _clouds(s: Scene) -> Optional[str]:
    return "Clouds present" if s.count("cloud") > 0 else None


def _no_person(s: Scene) -> Optional[str]:
    return "No person drawn" if s.count("person") == 0 else None


def _figure_small(s: Scene) -> Optional[str]:
    persons = s.of("person")
    if not persons:
        return None
    inches = figure_height_inches(persons)
    return f"Figure too small ({inches:.1f} inches)" if inches < FIGURE_SMALL_INCHES else None


def _figure_large(s: Scene) -> Optional[str]:
    persons = s.of("person")
    if not persons:
        return None
    inches = figure_height_inches(persons)
    return f"Figure too large ({inches:.1f} inches)" if inches > FIGURE_LARGE_INCHES else None


def _body_exposed(s: Scene) -> Optional[str]:
    if s.count("person") > 0 and s.count("rain") > 0 and s.count("umbrella") == 0:
        return "Body exposed to rain without protection"
    return None


def _umbrella_present(s: Scene) -> Optional[str]:
    return "Umbrella present" if s.count("umbrella") > 0 else None


def _umbrella_covers(s: Scene) -> Optional[str]:
    def covers(person: Detection, umbrella: Detection) -> bool:
        return overlaps(umbrella, person) and center(umbrella)[1] < center(person)[1]

    if _any_pair(s.of("person"), s.of("umbrella"), covers):
        return "Umbrella covers person"
    return None


def _figure_appropriate_size(s: Scene) -> Optional[str]:
    persons = s.of("person")
    if not persons:
        return None
    inches = figure_height_inches(persons)
    if FIGURE_SMALL_INCHES <= inches <= FIGURE_LARGE_INCHES:
        return f"Figure appropriate size ({inches:.1f} inches)"
    return None


def _complete_person(s: Scene) -> Optional[str]:
    return "Person is present" if s.count("person") > 0 else None


def _multiple_resources(s: Scene) -> Optional[str]:
    n = s.count("umbrella")
    return f"Multiple resources ({n})" if n > 1 else None


def _centered_figure(s: Scene) -> Optional[str]:
    persons = s.of("person")
    if not persons or s.image_width <= 0 or s.image_height <= 0:
        return None
    cx, cy = center(largest(persons))
    offset = math.hypot(cx - s.image_width / 2, cy - s.image_height / 2)
    if offset < min(s.image_width, s.image_height) * CENTERED_FRACTION:
        return "Figure is centered on page"
    return None


@dataclass(frozen=True)
class RuleItem:
    name: str
    category: ItemCategory
    method: ItemMethod
    description: str
    keyword: str
    rule: Optional[Rule] = None


def _stress(name: str, method: str, description: str, keyword: str, rule: Optional[Rule] = None) -> RuleItem:
    return RuleItem(name, ItemCategory.STRESS, ItemMethod(method), description, keyword, rule)


def _resource(name: str, method: str, description: str, keyword: str, rule: Optional[Rule] = None) -> RuleItem:
    return RuleItem(name, ItemCategory.RESOURCE, ItemMethod(method), description, keyword, rule)


STRESS_ITEMS: Tuple[RuleItem, ...] = (
    _stress("no_rain", "frequency", "Rain is present, No rain or other precipitation", "#No_rain", _no_rain),
    _stress("excess_rain", "frequency", "Excessive amount of rain", "#Excess_rain", _excess_rain),
    _stress("rain_hitting_person", "distance", "Rain hitting the person", "#Rain_hitting", _rain_hitting_person),
    _stress("stormy_rain", "frequency", "Stormy or driven rain (at an angle)", "#Stormy_rain"),
    _stress("lightning", "frequency", "Lightning present", "#Lightning", _lightning),
    _stress("lightning_hits", "distance", "Lightning hits person", "#Lightning_hit", _lightning_hits),
    _stress("puddles", "frequency", "Puddles present", "#Puddles", _puddles),
    _stress("standing_in_puddle", "distance", "Person standing in puddle(s)", "#In_puddle", _standing_in_puddle),
    _stress("clouds", "frequency", "Clouds present", "#Clouds", _clouds),
    _stress("dark_clouds", "frequency", "Dark or ominous clouds", "#Dark_clouds"),
    _stress("no_person", "frequency", "No person drawn", "#No_person", _no_person),
    _stress("figure_small", "area", "Figure less than 2 inches", "#Small_figure", _figure_small),
    _stress("figure_large", "area", "Figure larger than 6 inches", "#Large_figure", _figure_large),
    _stress("no_facial_features", "frequency", "No facial features on person", "#No_face"),
    _stress("body_exposed", "distance", "Body exposed to rain", "#Exposed", _body_exposed),
    _stress("sad_expression", "frequency", "Sad or distressed expression", "#Sad"),
)

RESOURCE_ITEMS: Tuple[RuleItem, ...] = (
    _resource("umbrella_present", "frequency", "Umbrella is present", "#Umbrella", _umbrella_present),
    _resource("umbrella_covers", "distance", "Umbrella covers person", "#Umbrella_covers", _umbrella_covers),
    _resource("umbrella_intact", "frequency", "Umbrella is intact and functional", "#Umbrella_intact"),
    _resource("raincoat", "frequency", "Raincoat or protective clothing", "#Raincoat"),
    _resource("boots", "frequency", "Boots or rain shoes", "#Boots"),
    _resource("hat", "frequency", "Hat or head covering", "#Hat"),
    _resource("shelter", "frequency", "Shelter or building", "#Shelter"),
    _resource(
        "figure_appropriate_size", "area", "Figure between 2-6 inches", "#Good_size", _figure_appropriate_size
    ),
    _resource("grounded_figure", "frequency", "Figure is grounded (standing on ground)", "#Grounded"),
    _resource("complete_person", "frequency", "Person has complete body parts", "#Person_present", _complete_person),
    _resource("facial_features", "frequency", "Person has facial features", "#Face"),
    _resource("smiling", "frequency", "Person is smiling or happy", "#Smiling"),
    _resource("movement", "frequency", "Person shows movement or action", "#Movement"),
    _resource("sun_present", "frequency", "Sun or rainbow present", "#Sun"),
    _resource("flowers_nature", "frequency", "Flowers or nature elements", "#Nature"),
    _resource("multiple_resources", "frequency", "Multiple coping resources", "#Multi_resources", _multiple_resources),
    _resource("detailed_drawing", "frequency", "Drawing shows detail and care", "#Detailed"),
    _resource("centered_figure", "area", "Figure is centered on page", "#Centered", _centered_figure),
    _resource("appropriate_proportions", "area", "Figure has appropriate proportions", "#Proportions"),
)


@dataclass(frozen=True)
class ScoreItem:
    name: str
    category: ItemCategory
    method: ItemMethod
    score: int
    description: str
    max_score: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category.value,
            "method": self.method.value,
            "score": self.score,
            "max_score": self.max_score,
            "description": self.description,
        }


@dataclass(frozen=True)
class Attribute:
    """
    Human-readable note for a triggered item.
    """

    name: str
    keyword: str
    description: str
    score: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "keyword": self.keyword, "description": self.description, "score": self.score}


@dataclass(frozen=True)
class DAPRScore:
    stress_score: int
    resource_score: int
    total_score: int
    stress_items: Tuple[ScoreItem, ...]
    resource_items: Tuple[ScoreItem, ...]
    interpretation: str
    band: InterpretationBand
    stress_attributes: Tuple[Attribute, ...] = ()
    resource_attributes: Tuple[Attribute, ...] = ()
    version: int = RULE_TABLE_VERSION

    def item(self, name: str) -> ScoreItem:
        for it in self.stress_items + self.resource_items:
            if it.name == name:
                return it
        raise KeyError(name)

    def triggered(self) -> Tuple[str, ...]:
        return tuple(it.name for it in self.stress_items + self.resource_items if it.score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stress_score": self.stress_score,
            "resource_score": self.resource_score,
            "total_score": self.total_score,
            "stress_items": [it.to_dict() for it in self.stress_items],
            "resource_items": [it.to_dict() for it in self.resource_items],
            "interpretation": self.interpretation,
            "band": self.band.value,
            "attributes": {
                "stress": [a.to_dict() for a in self.stress_attributes],
                "resource": [a.to_dict() for a in self.resource_attributes],
            },
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DAPRScore":
        def _items(raw: Iterable[Dict[str, Any]]) -> Tuple[ScoreItem, ...]:
            return tuple(
                ScoreItem(
                    name=str(r["name"]),
                    category=ItemCategory(r["category"]),
                    method=ItemMethod(r["method"]),
                    score=int(r["score"]),
                    description=str(r.get("description", "")),
                    max_score=int(r.get("max_score", 1)),
                )
                for r in raw
            )

        def _attrs(raw: Iterable[Dict[str, Any]]) -> Tuple[Attribute, ...]:
            return tuple(
                Attribute(
                    name=str(r.get("name", "")),
                    keyword=str(r["keyword"]),
                    description=str(r["description"]),
                    score=int(r.get("score", 1)),
                )
                for r in raw
            )

        attributes = payload.get("attributes") or {}
        total = int(payload["total_score"])
        return cls(
            stress_score=int(payload["stress_score"]),
            resource_score=int(payload["resource_score"]),
            total_score=total,
            stress_items=_items(payload.get("stress_items", [])),
            resource_items=_items(payload.get("resource_items", [])),
            interpretation=str(payload.get("interpretation", get_interpretation(total))),
            band=InterpretationBand(payload.get("band", interpretation_band(total).value)),
            stress_attributes=_attrs(attributes.get("stress", [])),
            resource_attributes=_attrs(attributes.get("resource", [])),
            version=int(payload.get("version", RULE_TABLE_VERSION)),
        )


def _evaluate(table: Sequence[RuleItem], scene: Scene) -> Tuple[Tuple[ScoreItem, ...], Tuple[Attribute, ...]]:
    items: List[ScoreItem] = []
    attributes: List[Attribute] = []
    for rule_item in table:
        found = rule_item.rule(scene) if rule_item.rule is not None else None
        score = 1 if found is not None else 0
        items.append(
            ScoreItem(
                name=rule_item.name,
                category=rule_item.category,
                method=rule_item.method,
                score=score,
                description=rule_item.description,
            )
        )
        if found is not None:
            attributes.append(Attribute(name=rule_item.name, keyword=rule_item.keyword, description=found))
    return tuple(items), tuple(attributes)


def _usable(detections: Optional[Iterable[Detection]]) -> List[Detection]:
    out: List[Detection] = []
    for d in detections or ():
        if not isinstance(d, Detection):
            continue
        coords = (d.x1, d.y1, d.x2, d.y2)
        if not all(math.isfinite(v) for v in coords):
            continue
        out.append(d)
    return out


def calculate_dapr_score(
    detections: Optional[Iterable[Detection]],
    image_width: float,
    image_height: float,
) -> DAPRScore:
    """
    Score a detection set. Never raises on empty or odd input: entries that
    are not finite Detections are ignored and missing categories simply fail
    their rules.
    """

    scene = Scene.build(_usable(detections), image_width, image_height)
    stress_items, stress_attrs = _evaluate(STRESS_ITEMS, scene)
    resource_items, resource_attrs = _evaluate(RESOURCE_ITEMS, scene)

    stress_score = sum(it.score for it in stress_items)
    resource_score = sum(it.score for it in resource_items)
    total = resource_score - stress_score
    band = interpretation_band(total)

    return DAPRScore(
        stress_score=stress_score,
        resource_score=resource_score,
        total_score=total,
        stress_items=stress_items,
        resource_items=resource_items,
        interpretation=INTERPRETATIONS[band],
        band=band,
        stress_attributes=stress_attrs,
        resource_attributes=resource_attrs,
    )
