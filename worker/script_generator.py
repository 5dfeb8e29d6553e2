"""Script and scene-prompt generation with the OpenAI chat API."""

import json
import logging
from typing import List

from openai import OpenAI  # type: ignore

from common.schemas import ScenePrompt
from worker.config import OPENAI_API_KEY, SCENE_MODEL, SCRIPT_MODEL

logger = logging.getLogger(__name__)

SCRIPT_SYSTEM_PROMPT = (
    "You are a social-media-savvy storyteller writing narration for short vertical videos. "
    "Write in a conversational and engaging tone, open with a strong hook, give the piece a clear "
    "beginning, middle and end, and finish on a thought-provoking line."
)

SCENES_SYSTEM_PROMPT = (
    "You turn video narration into image-generation prompts. "
    "You MUST return a valid JSON object with a single key, 'scenes', whose value is a JSON array. "
    "Each element MUST have exactly two keys: 'image_prompt' (string) and 'index' (integer, starting at 0)."
)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        text = text[3:]
        if "\n" in text:
            text = text.split("\n", 1)[1]
        text = text[:-3].strip()
    return text


def parse_scene_prompts(raw: str) -> List[ScenePrompt]:
    """
    Parse the model's scene list and renumber it 0..N-1 in the order of the
    indices the model returned. Raises ValueError on an empty or malformed list.
    """
    data = json.loads(strip_code_fences(raw))
    if isinstance(data, dict):
        data = data.get("scenes")
    if not isinstance(data, list):
        raise ValueError(f"Scene response is not a list: {raw[:200]}")
    if not data:
        raise ValueError("No scenes generated")

    items = []
    for position, item in enumerate(data):
        prompt = (item.get("image_prompt") or "").strip() if isinstance(item, dict) else ""
        if not prompt:
            raise ValueError(f"Scene {position} has no image_prompt")
        order = item.get("index", position)
        items.append((order if isinstance(order, int) else position, position, prompt))

    items.sort()
    return [ScenePrompt(image_prompt=prompt, index=i) for i, (_, _, prompt) in enumerate(items)]


class ScriptGenerator:
    """Writes the narration script and derives scene prompts from it."""

    def __init__(self, client=None, script_model: str = SCRIPT_MODEL, scene_model: str = SCENE_MODEL):
        self.client = client or OpenAI(api_key=OPENAI_API_KEY)
        self.script_model = script_model
        self.scene_model = scene_model

    def generate_script(self, theme: str) -> str:
        response = self.client.chat.completions.create(
            model=self.script_model,
            messages=[
                {"role": "system", "content": SCRIPT_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"Write a video script about: **{theme}**\n"
                        "- 50-100 words (about 20 seconds narrated)\n"
                        "- Paragraph format, no headers or bullet points\n"
                        "- Write ONLY the script text, no labels or stage directions"
                    ),
                },
            ],
            temperature=0.7,
            max_tokens=300,
        )
        script = (response.choices[0].message.content or "").strip()
        if not script:
            raise ValueError("Generated script is empty")
        return script

    def generate_scene_prompts(self, script: str) -> List[ScenePrompt]:
        response = self.client.chat.completions.create(
            model=self.scene_model,
            response_format={"type": "json_object"},  # Enforce JSON mode
            messages=[
                {"role": "system", "content": SCENES_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        "Based on the following video script, write 2-3 scene descriptions for the images "
                        "shown while it is narrated.\n\n"
                        f"Script:\n{script}\n\n"
                        "- Order the scenes to follow the progression of the script\n"
                        "- Make each prompt 3-4 descriptive sentences covering characters, objects and background\n"
                        "- Keep one consistent visual style and colour palette across all scenes"
                    ),
                },
            ],
            temperature=0.7,
            max_tokens=800,
        )
        raw = response.choices[0].message.content or ""
        try:
            return parse_scene_prompts(raw)
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Error processing scene response: {e}. Raw response: {raw[:500]}")
            raise
