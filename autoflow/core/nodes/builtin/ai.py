"""
AI Nodes

OpenAI-backed text, vision and audio nodes. Every node uses the invoking
user's own OpenAI key, resolved like any other static credential.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from autoflow.config import get_settings
from autoflow.core.nodes.builtin._helpers import (
    DATA_INPUT,
    auth_headers,
    decode_content,
    encode_content,
    options,
    parse_json_field,
    text_from,
)
from autoflow.core.nodes.registry import register_node
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType
from autoflow.services.http_client import parse_body

logger = logging.getLogger(__name__)

LANGUAGES = ("en", "es", "fr", "de", "zh", "ja", "ko", "pt", "ru", "ar", "it")
VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
AUDIO_FORMATS = ("mp3", "opus", "aac", "flac")
DEFAULT_ENTITY_TYPES = ["person", "organization", "location", "date", "money", "event"]

VISION_PROMPTS = {
    "objects": 'Identify all objects in this image. Return JSON {"results": [{"label", "confidence", "description"}]}.',
    "scene": 'Describe the scene in this image. Return JSON {"results": [{"label": "scene", "description"}]}.',
    "ocr": "Extract all text from this image. Return only the extracted text.",
    "faces": 'Describe any faces in this image. Return JSON {"results": [{"description", "confidence"}]}.',
    "labels": 'Generate descriptive labels for this image. Return JSON {"results": [{"label", "confidence"}]}.',
}


def openai_url(path: str) -> str:
    return f"{get_settings().OPENAI_API_BASE.rstrip('/')}/{path.lstrip('/')}"


async def chat_completion(
    context,
    messages: List[Dict[str, Any]],
    model: Optional[str] = None,
    json_mode: bool = False,
    max_tokens: Optional[int] = None,
) -> str:
    """Run one chat completion and return the message text."""
    credential = await context.credentials.get("openai")
    payload: Dict[str, Any] = {"model": model or get_settings().OPENAI_CHAT_MODEL, "messages": messages}
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    if max_tokens:
        payload["max_tokens"] = max_tokens

    response = await context.http.post(openai_url("chat/completions"), payload, headers=auth_headers(credential),
                                       provider="openai")
    choices = response.get("choices") or [{}]
    return (choices[0].get("message") or {}).get("content") or ""


def parse_json_reply(content: str) -> Dict[str, Any]:
    """Model replies in JSON mode are objects; anything else yields {}."""
    try:
        parsed = json.loads(content)
    except ValueError:
        logger.debug(f"Model reply is not JSON: {content[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {"results": parsed}


def string_list(value: Any, label: str) -> List[str]:
    items = parse_json_field(value, label)
    if isinstance(items, str):
        items = [part.strip() for part in items.split(",")]
    if not isinstance(items, list):
        raise ValueError(f"{label} must be a list")
    return [str(item) for item in items if str(item).strip()]


@register_node(
    node_type="generate-summary-with-ai",
    name="Generate Summary with AI",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Summarizes text with an OpenAI model.",
    icon="Sparkles",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "summary", "type": PortType.TEXT},
        {"name": "originalLength", "type": PortType.NUMBER},
        {"name": "summaryLength", "type": PortType.NUMBER},
    ],
    config_schema={
        "text": {"type": "text", "label": "Text", "description": "Text to summarize (defaults to previous output)"},
        "maxLength": {"type": "integer", "label": "Max Length", "description": "Maximum summary length in words",
                      "default": 100},
    },
    services=("openai",),
)
async def generate_summary_with_ai(input_data, config, context):
    text = text_from(config.get("text"), input_data)
    if not text.strip():
        raise ValueError("Nothing to summarize: set Text or connect a node that outputs text")
    max_words = int(config["maxLength"])

    summary = await chat_completion(
        context,
        [
            {"role": "system", "content": f"Summarize the following text in {max_words} words or less."},
            {"role": "user", "content": text},
        ],
        max_tokens=max_words * 2,
    )
    return {"summary": summary, "originalLength": len(text), "summaryLength": len(summary)}


@register_node(
    node_type="generate-ai-content",
    name="Generate AI Content",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Generates text from a prompt.",
    icon="Sparkles",
    inputs=DATA_INPUT,
    outputs=[{"name": "content", "type": PortType.TEXT}],
    config_schema={
        "prompt": {"type": "text", "label": "Prompt", "description": 'e.g. "Write a social media post about..."',
                   "required": True},
        "systemPrompt": {"type": "text", "label": "System Prompt", "description": "Optional instructions for tone and role"},
    },
    services=("openai",),
)
async def generate_ai_content(input_data, config, context):
    messages = []
    if config.get("systemPrompt"):
        messages.append({"role": "system", "content": config["systemPrompt"]})
    messages.append({"role": "user", "content": config["prompt"]})
    return {"content": await chat_completion(context, messages)}


@register_node(
    node_type="classify-text",
    name="Classify Text",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Assigns text to one of the given categories.",
    icon="Tags",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "category", "type": PortType.TEXT},
        {"name": "confidence", "type": PortType.NUMBER},
    ],
    config_schema={
        "text": {"type": "text", "label": "Text", "description": "Text to classify (defaults to previous output)"},
        "categories": {"type": "array", "label": "Categories", "description": 'e.g. ["positive", "negative"]',
                       "required": True},
        "prompt": {"type": "text", "label": "Custom Prompt", "description": "Optional custom classification prompt"},
    },
    services=("openai",),
)
async def classify_text(input_data, config, context):
    categories = string_list(config["categories"], "Categories")
    if not categories:
        raise ValueError("At least one category is required")
    text = text_from(config.get("text"), input_data)

    instructions = config.get("prompt") or (
        f"Classify the text into exactly one of these categories: {', '.join(categories)}. "
        'Return JSON: {"category": "<name>", "confidence": <0-1>, "allScores": {"<name>": <0-1>}}'
    )
    reply = parse_json_reply(await chat_completion(
        context,
        [
            {"role": "system", "content": "You are a text classification assistant. Return only valid JSON."},
            {"role": "user", "content": f"{instructions}\n\nText: {text}"},
        ],
        json_mode=True,
    ))
    category = reply.get("category")
    return {
        "category": category if category in categories else categories[0],
        "confidence": reply.get("confidence", 0.5) if category in categories else 0.0,
        "allScores": reply.get("allScores") or {},
    }


@register_node(
    node_type="extract-entities",
    name="Extract Entities",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Finds people, organizations, places and other entities in text.",
    icon="ScanSearch",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "entities", "type": PortType.ARRAY},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "text": {"type": "text", "label": "Text", "description": "Text to extract entities from"},
        "entityTypes": {"type": "array", "label": "Entity Types", "description": 'e.g. ["person", "location"]'},
    },
    services=("openai",),
)
async def extract_entities(input_data, config, context):
    types = string_list(config.get("entityTypes"), "Entity types") if config.get("entityTypes") else DEFAULT_ENTITY_TYPES
    text = text_from(config.get("text"), input_data)

    reply = parse_json_reply(await chat_completion(
        context,
        [
            {
                "role": "system",
                "content": (
                    "You extract named entities. Return JSON {\"entities\": [{\"text\", \"type\", \"confidence\"}]}. "
                    f"Entity types: {', '.join(types)}"
                ),
            },
            {"role": "user", "content": f"Extract entities from: {text}"},
        ],
        json_mode=True,
    ))
    entities = reply.get("entities") or reply.get("results") or []
    if not isinstance(entities, list):
        entities = []
    return {"entities": entities, "count": len(entities)}


@register_node(
    node_type="sentiment-analysis",
    name="Sentiment Analysis",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Scores the sentiment of text.",
    icon="Smile",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "sentiment", "type": PortType.TEXT},
        {"name": "score", "type": PortType.NUMBER, "description": "-1 (negative) to 1 (positive)"},
        {"name": "confidence", "type": PortType.NUMBER},
    ],
    config_schema={
        "text": {"type": "text", "label": "Text", "description": "Text to analyze"},
        "granularity": {"type": "select", "label": "Granularity", "default": "simple",
                        "options": options("simple", "detailed")},
    },
    services=("openai",),
)
async def sentiment_analysis(input_data, config, context):
    text = text_from(config.get("text"), input_data)
    if config["granularity"] == "detailed":
        instructions = ('Return JSON: {"sentiment": "<emotion>", "score": <-1..1>, "confidence": <0..1>, '
                        '"emotions": {"joy": <0..1>, ...}}')
    else:
        instructions = 'Return JSON: {"sentiment": "positive|negative|neutral", "score": <-1..1>, "confidence": <0..1>}'

    reply = parse_json_reply(await chat_completion(
        context,
        [
            {"role": "system", "content": "You are a sentiment analysis assistant. Return only valid JSON."},
            {"role": "user", "content": f"Analyze the sentiment of this text. {instructions}\n\nText: {text}"},
        ],
        json_mode=True,
    ))
    result = {
        "sentiment": reply.get("sentiment", "neutral"),
        "score": reply.get("score", 0),
        "confidence": reply.get("confidence", 0.5),
    }
    if config["granularity"] == "detailed":
        result["emotions"] = reply.get("emotions") or {}
    return result


@register_node(
    node_type="translate-text",
    name="Translate Text",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Translates text between languages.",
    icon="Languages",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "translatedText", "type": PortType.TEXT},
        {"name": "targetLanguage", "type": PortType.TEXT},
    ],
    config_schema={
        "text": {"type": "text", "label": "Text", "description": "Text to translate"},
        "sourceLanguage": {"type": "select", "label": "Source Language", "default": "auto",
                           "options": options("auto", *LANGUAGES)},
        "targetLanguage": {"type": "select", "label": "Target Language", "required": True,
                           "options": options(*LANGUAGES)},
    },
    services=("openai",),
)
async def translate_text(input_data, config, context):
    text = text_from(config.get("text"), input_data)
    source = config["sourceLanguage"]
    source_clause = "" if source == "auto" else f" from {source}"

    translated = await chat_completion(
        context,
        [
            {"role": "system", "content": "You are a translator. Return only the translated text."},
            {"role": "user", "content": f"Translate{source_clause} to {config['targetLanguage']}:\n\n{text}"},
        ],
    )
    return {
        "translatedText": translated.strip(),
        "sourceLanguage": source,
        "targetLanguage": config["targetLanguage"],
        "originalText": text,
    }


@register_node(
    node_type="generate-image",
    name="Generate Image",
    kind=NodeKind.ACTION,
    category=NodeCategory.AI,
    description="Generates an image from a prompt.",
    icon="Image",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "url", "type": PortType.IMAGE},
        {"name": "revisedPrompt", "type": PortType.TEXT},
    ],
    config_schema={
        "prompt": {"type": "text", "label": "Prompt", "description": "Describe the image to generate", "required": True},
        "size": {"type": "select", "label": "Size", "default": "1024x1024",
                 "options": options("1024x1024", "1024x1792", "1792x1024")},
        "style": {"type": "select", "label": "Style", "default": "vivid", "options": options("natural", "vivid")},
        "quality": {"type": "select", "label": "Quality", "default": "standard", "options": options("standard", "hd")},
    },
    services=("openai",),
)
async def generate_image(input_data, config, context):
    credential = await context.credentials.get("openai")
    response = await context.http.post(
        openai_url("images/generations"),
        {
            "model": get_settings().OPENAI_IMAGE_MODEL,
            "prompt": config["prompt"],
            "size": config["size"],
            "style": config["style"],
            "quality": config["quality"],
            "n": 1,
        },
        headers=auth_headers(credential),
        provider="openai",
    )
    image = (response.get("data") or [{}])[0]
    return {"image": image.get("url"), "url": image.get("url"), "revisedPrompt": image.get("revised_prompt") or config["prompt"]}


def image_reference(config: Mapping[str, Any], input_data: Any) -> str:
    """URL or data: URL for the vision model."""
    image = config.get("imageUrl") or config.get("imageContent")
    if not image and isinstance(input_data, str):
        image = input_data
    if not image and isinstance(input_data, Mapping):
        image = input_data.get("imageUrl") or input_data.get("image") or input_data.get("imageContent") or input_data.get("content")
    if not image:
        raise ValueError("Image content, image URL, or input data is required")
    if image.startswith(("http://", "https://", "data:")):
        return image
    return f"data:image/jpeg;base64,{image}"


@register_node(
    node_type="image-recognition",
    name="Image Recognition",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Detects objects, labels, faces or text in an image.",
    icon="ScanEye",
    inputs=[{"name": "data", "type": PortType.IMAGE, "description": "Image (base64 or URL)"}],
    outputs=[
        {"name": "results", "type": PortType.ARRAY},
        {"name": "text", "type": PortType.TEXT, "description": "Extracted text (ocr task)"},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "imageContent": {"type": "text", "label": "Image Content", "description": "Base64 image (defaults to input)"},
        "imageUrl": {"type": "url", "label": "Image URL", "description": "URL of image to analyze"},
        "task": {"type": "select", "label": "Task", "required": True, "default": "labels", "options": options(*VISION_PROMPTS)},
        "maxResults": {"type": "integer", "label": "Max Results", "default": 10},
    },
    services=("openai",),
)
async def image_recognition(input_data, config, context):
    task = config["task"]
    if task not in VISION_PROMPTS:
        raise ValueError(f"Unknown image task: {task}")
    image = image_reference(config, input_data)

    content = await chat_completion(
        context,
        [
            {"role": "system", "content": VISION_PROMPTS[task]},
            {"role": "user", "content": [
                {"type": "image_url", "image_url": {"url": image}},
                {"type": "text", "text": "Analyze this image."},
            ]},
        ],
        model=get_settings().OPENAI_VISION_MODEL,
        json_mode=task != "ocr",
        max_tokens=1000,
    )
    if task == "ocr":
        return {"results": [], "text": content, "count": len(content)}

    reply = parse_json_reply(content)
    results = reply.get("results") or []
    if not isinstance(results, list):
        results = [results]
    results = results[: int(config["maxResults"])]
    return {"results": results, "text": None, "count": len(results)}


@register_node(
    node_type="text-to-speech",
    name="Text to Speech",
    kind=NodeKind.ACTION,
    category=NodeCategory.AI,
    description="Converts text to spoken audio.",
    icon="Volume2",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "audio", "type": PortType.AUDIO, "description": "Base64 audio"},
        {"name": "mimeType", "type": PortType.TEXT},
        {"name": "duration", "type": PortType.NUMBER, "description": "Estimated seconds"},
    ],
    config_schema={
        "text": {"type": "text", "label": "Text", "description": "Text to speak (defaults to previous output)"},
        "voice": {"type": "select", "label": "Voice", "default": "alloy", "options": options(*VOICES)},
        "speed": {"type": "number", "label": "Speed", "description": "0.25 to 4.0", "default": 1.0},
        "format": {"type": "select", "label": "Format", "default": "mp3", "options": options(*AUDIO_FORMATS)},
    },
    services=("openai",),
)
async def text_to_speech(input_data, config, context):
    text = text_from(config.get("text"), input_data)
    if not text.strip():
        raise ValueError("Text is required")
    voice = config["voice"] if config["voice"] in VOICES else "alloy"
    audio_format = config["format"] if config["format"] in AUDIO_FORMATS else "mp3"
    speed = min(4.0, max(0.25, float(config["speed"])))

    credential = await context.credentials.get("openai")
    response = await context.http.send(
        "POST",
        openai_url("audio/speech"),
        body={
            "model": get_settings().OPENAI_TTS_MODEL,
            "input": text,
            "voice": voice,
            "speed": speed,
            "response_format": audio_format,
        },
        headers=auth_headers(credential),
        provider="openai",
    )
    # ~150 spoken words per minute
    duration = len(text.split()) / 150 * 60 / speed
    return {
        "audio": encode_content(response.content),
        "format": audio_format,
        "mimeType": f"audio/{audio_format}",
        "duration": round(duration, 1),
    }


@register_node(
    node_type="speech-to-text",
    name="Speech to Text",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.AI,
    description="Transcribes audio to text.",
    icon="Mic",
    inputs=[{"name": "data", "type": PortType.AUDIO, "description": "Audio (base64 or URL)"}],
    outputs=[
        {"name": "text", "type": PortType.TEXT},
        {"name": "language", "type": PortType.TEXT},
    ],
    config_schema={
        "audioContent": {"type": "text", "label": "Audio Content", "description": "Base64 audio (defaults to input)"},
        "audioUrl": {"type": "url", "label": "Audio URL", "description": "URL of audio file to transcribe"},
        "language": {"type": "select", "label": "Language", "default": "auto",
                     "options": options("auto", *LANGUAGES[:10])},
        "responseFormat": {"type": "select", "label": "Response Format", "default": "text",
                           "options": options("text", "json", "srt", "vtt")},
    },
    services=("openai",),
)
async def speech_to_text(input_data, config, context):
    if config.get("audioUrl"):
        audio = (await context.http.send("GET", config["audioUrl"])).content
    else:
        source = config.get("audioContent")
        if not source and isinstance(input_data, Mapping):
            source = input_data.get("audio") or input_data.get("audioContent") or input_data.get("content")
        elif not source and isinstance(input_data, str):
            source = input_data
        if not source:
            raise ValueError("Audio content, audio URL, or input data is required")
        audio = decode_content(source)

    response_format = config["responseFormat"]
    language = config["language"]
    form = {"model": get_settings().OPENAI_STT_MODEL, "response_format": response_format}
    if language != "auto":
        form["language"] = language

    credential = await context.credentials.get("openai")
    response = await context.http.send(
        "POST",
        openai_url("audio/transcriptions"),
        data=form,
        files={"file": ("audio.mp3", audio, "audio/mpeg")},
        headers=auth_headers(credential),
        provider="openai",
    )
    result = parse_body(response)
    if response_format == "json" and isinstance(result, dict):
        return {
            "text": result.get("text", ""),
            "segments": result.get("segments") or [],
            "language": result.get("language") or language,
            "duration": result.get("duration"),
        }
    return {
        "text": result if isinstance(result, str) else str(result or ""),
        "format": response_format,
        "language": "auto-detected" if language == "auto" else language,
    }
