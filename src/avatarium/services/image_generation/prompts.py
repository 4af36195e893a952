"""Photoset prompt catalogue, style merging and reference image filtering.

Each style selects an ordered subset of PHOTOSET_PROMPTS and wraps every
template in its own prefix and suffix. Prompt index i of a job is always
built from the style's i-th selected template, so any dispatch chunk can
rebuild the prompt for an index without the job carrying the prompt list.
"""

from dataclasses import dataclass, field
from urllib.parse import urlparse

PHOTOSET_PROMPTS: tuple[str, ...] = (
    "Standing against jagged snow-covered alpine peaks under a clear sky, bright orange down "
    "jacket, arms folded, aviator sunglasses. Crisp high-altitude daylight.",
    "Lounging on a yacht deck off a terraced Italian coastal town at golden hour, open blue "
    "linen shirt, relaxed confident expression.",
    "Seated at a Parisian cafe terrace in soft morning light, white linen shirt, espresso on a "
    "marble bistro table, cobblestone street softly blurred behind.",
    "Corner office with floor-to-ceiling windows over a city skyline, tailored charcoal suit, "
    "standing beside a walnut desk.",
    "Walking through an autumn park with golden leaves, camel wool coat, mid-stride candid moment.",
    "Barefoot on a white sand beach at sunset, light linen outfit, warm rim light from the low sun.",
    "Crossing a busy downtown street at dusk, city lights bokeh, dark overcoat, confident gaze.",
    "Rooftop terrace at blue hour, skyline behind, smart casual blazer, leaning on a glass railing.",
    "Vintage record store aisle, browsing vinyl, knit sweater, warm tungsten interior light.",
    "Minimalist photo studio, seamless grey backdrop, black turtleneck, dramatic single key light.",
    "Rain-soaked neon street at night, transparent umbrella, reflections on wet asphalt.",
    "Classic library with tall wooden shelves, reading by a window, tweed jacket, soft daylight.",
    "Farmers market with colourful produce stalls, denim shirt, holding a paper bag, midday sun.",
    "Foggy forest path at dawn, wool scarf, mist layers between tall pines, muted palette.",
    "Desert dunes at golden hour, flowing light fabric, long shadows across the sand.",
    "Jazz club stage with warm spotlight, holding a saxophone, smoky atmosphere.",
    "Cozy loft with exposed brick and large windows, oversized sweater, coffee mug, window light.",
    "Autumn vineyard rows at harvest, rolled-up sleeves, holding a basket of grapes.",
    "Modern art gallery with white walls and large abstract canvas, monochrome outfit.",
    "Mountain lake pier at sunrise, flannel shirt, mirror-still water and pine reflections.",
    "Black-and-white portrait on a Paris bridge, trench coat, wind in the hair.",
    "Snowy city square at night with fairy lights, cashmere scarf, falling snow bokeh.",
    "Sailing boat in a marina at midday, white polo, ropes and rigging in the foreground.",
)

CONSISTENCY_DIRECTIVE = (
    "maintaining consistent facial features, same person throughout, "
    "consistent skin tone and complexion, recognizable face structure."
)


@dataclass(frozen=True)
class StyleConfig:
    """Style definition: display name, prompt wrapping and template selection."""

    name: str
    prefix: str
    suffix: str
    prompt_indices: tuple[int, ...] = field(default_factory=tuple)

    def build_prompt(self, index: int) -> str:
        """Build the final prompt for the index-th photo of this style.

        Raises:
            IndexError: If index is outside the style's selection
        """
        template = PHOTOSET_PROMPTS[self.prompt_indices[index]]
        return enhance_for_consistency(merge_prompt(template, self.prefix, self.suffix))


STYLE_CONFIGS: dict[str, StyleConfig] = {
    "pinglass": StyleConfig(
        name="Premium",
        prefix="Ultra-high-quality magazine editorial photograph. ",
        suffix=" Professional retouching, premium fashion photography standard.",
        prompt_indices=tuple(range(len(PHOTOSET_PROMPTS))),
    ),
    "professional": StyleConfig(
        name="Professional",
        prefix="Shot on medium-format camera. Executive magazine editorial style. ",
        suffix=" Professional three-point lighting, corporate elegance, confident presence.",
        prompt_indices=(3, 11, 6, 7, 4, 18, 12),
    ),
    "lifestyle": StyleConfig(
        name="Lifestyle",
        prefix="Shot with an 85mm f/1.4 lens. Editorial lifestyle photography. ",
        suffix=" Natural golden-hour or soft window lighting, authentic candid moment.",
        prompt_indices=(1, 2, 4, 5, 8, 12, 15, 16, 22),
    ),
    "creative": StyleConfig(
        name="Creative",
        prefix="Shot on medium format with a specialty lens. High-fashion editorial. ",
        suffix=" Dramatic lighting, bold artistic composition, gallery-worthy fine art quality.",
        prompt_indices=(9, 13, 16, 17, 10, 20, 14, 7, 21),
    ),
}


def get_style(style_id: str) -> StyleConfig | None:
    return STYLE_CONFIGS.get(style_id)


def merge_prompt(template: str, prefix: str, suffix: str) -> str:
    """Wrap a template in a style prefix and suffix.

    A prefix or suffix the template already carries is not added twice.
    """
    merged = template.strip()
    if prefix and not merged.startswith(prefix.strip()):
        merged = f"{prefix.strip()} {merged}"
    if suffix and not merged.endswith(suffix.strip()):
        merged = f"{merged} {suffix.strip()}"
    return merged


def enhance_for_consistency(prompt: str) -> str:
    """Append the identity-consistency directive once."""
    if CONSISTENCY_DIRECTIVE in prompt:
        return prompt
    return f"{prompt}\n\n{CONSISTENCY_DIRECTIVE}"


def build_prompts(style: StyleConfig, count: int) -> list[str]:
    """Ordered prompts for the first `count` photos of a style."""
    return [style.build_prompt(i) for i in range(min(count, len(style.prompt_indices)))]


def filter_reference_images(images: list[str], max_images: int) -> tuple[list[str], list[str]]:
    """Keep unique http(s) URLs, capped at max_images, preserving input order.

    Args:
        images: Reference image locations from the request
        max_images: Maximum number of references forwarded to the engine

    Returns:
        Tuple of (selected, rejected); duplicates are dropped silently
    """
    selected: list[str] = []
    rejected: list[str] = []
    seen: set[str] = set()

    for image in images:
        candidate = (image or "").strip()
        if candidate in seen:
            continue
        seen.add(candidate)

        parsed = urlparse(candidate)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            rejected.append(candidate)
            continue

        selected.append(candidate)

    return selected[:max_images], rejected
