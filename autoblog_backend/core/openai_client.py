"""
OpenAI client singleton and helper functions.
"""
import asyncio
import json
import logging
from typing import List, Dict, Any, Optional
from openai import OpenAI
from .config import settings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Singleton instance
_openai_client: Optional[OpenAI] = None


def get_openai() -> OpenAI:
    """Get OpenAI client singleton."""
    global _openai_client

    if _openai_client is None:
        if not settings.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is required but not set")

        _openai_client = OpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.OPENAI_TIMEOUT_S
        )
        logger.info(f"OpenAI client initialized with model: {settings.OPENAI_TEXT_MODEL}")

    return _openai_client


def _token_options(model: str) -> Dict[str, Any]:
    # Newer models reject max_tokens
    if model.startswith(("gpt-4o", "gpt-4.1", "gpt-5", "o1", "o3", "o4")):
        return {"max_completion_tokens": settings.OPENAI_MAX_TOKENS_TEXT}
    return {"max_tokens": settings.OPENAI_MAX_TOKENS_TEXT}


async def run_text(messages: List[Dict[str, str]], **opts) -> str:
    """
    Generate text using OpenAI chat completions.

    Args:
        messages: List of message dicts with 'role' and 'content'
        **opts: Additional options (model, temperature, response_format, etc.)

    Returns:
        Generated text content
    """
    client = get_openai()

    model = opts.get("model", settings.OPENAI_TEXT_MODEL)
    options = {
        "model": model,
        "temperature": settings.OPENAI_TEMPERATURE,
        "messages": messages,
        **_token_options(model),
    }
    options.update(opts)

    try:
        logger.info(f"Calling OpenAI with model: {options['model']}")
        # The SDK call blocks; keep the event loop free for the scheduler
        response = await asyncio.to_thread(client.chat.completions.create, **options)

        content = response.choices[0].message.content
        logger.info(f"OpenAI response received, length: {len(content) if content else 0}")

        return content or ""

    except Exception as e:
        logger.error(f"OpenAI text generation failed: {str(e)}")
        raise


async def run_text_structured(messages: List[Dict[str, str]], context: str = "", **opts) -> Dict[str, Any]:
    """Chat completion in JSON mode, parsed into a dict (one JSON-only retry)."""
    opts.setdefault("response_format", {"type": "json_object"})
    return await retry_with_json_prompt(messages, context, **opts)


async def gen_image(prompt: str, size: str = "1024x1024", quality: str = "standard") -> str:
    """
    Generate image using OpenAI DALL-E.

    Args:
        prompt: Image generation prompt
        size: Image size (1024x1024, 1792x1024, 1024x1792)
        quality: Image quality (standard, hd)

    Returns:
        Image URL, or a data URI when the API answers with base64
    """
    client = get_openai()

    try:
        logger.info(f"Generating image with prompt: {prompt[:100]}...")
        response = await asyncio.to_thread(
            client.images.generate,
            model=settings.OPENAI_IMAGE_MODEL,
            prompt=prompt,
            size=size,
            quality=quality,
            n=1
        )

        image = response.data[0]
        if image.url:
            image_url = image.url
        elif image.b64_json:
            image_url = f"data:image/png;base64,{image.b64_json}"
        else:
            raise ValueError("Image response contained neither url nor b64_json")

        logger.info(f"Image generated successfully: {image_url[:100]}")
        return image_url

    except Exception as e:
        logger.error(f"OpenAI image generation failed: {str(e)}")
        raise


def validate_json_response(content: str, context: str = "") -> Dict[str, Any]:
    """
    Validate and parse JSON response from OpenAI.

    Args:
        content: Raw content from OpenAI
        context: Context for error messages

    Returns:
        Parsed JSON dict

    Raises:
        ValueError: If JSON is invalid
    """
    content = (content or "").strip()

    # Look for JSON block markers
    if "```json" in content:
        start = content.find("```json") + 7
        end = content.find("```", start)
        if end != -1:
            content = content[start:end].strip()
    elif "```" in content:
        start = content.find("```") + 3
        end = content.find("```", start)
        if end != -1:
            content = content[start:end].strip()

    # Fall back to the outermost braces
    first = content.find("{")
    last = content.rfind("}")
    if first != -1 and last > first:
        content = content[first:last + 1]

    if not content:
        raise ValueError(f"Empty content after cleaning for {context}")

    try:
        result = json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"JSON validation failed for {context}: {str(e)}")
        logger.error(f"Content: {content[:200]}...")
        raise ValueError(f"Invalid JSON response for {context}: {str(e)}")

    if not isinstance(result, dict):
        raise ValueError(f"Expected a JSON object for {context}, got {type(result).__name__}")

    return result


async def retry_with_json_prompt(messages: List[Dict[str, str]], context: str = "", **opts) -> Dict[str, Any]:
    """
    Retry OpenAI call with JSON-only prompt if first attempt fails.

    Args:
        messages: Original messages
        context: Context for error messages

    Returns:
        Parsed JSON dict
    """
    try:
        content = await run_text(messages, **opts)
        return validate_json_response(content, context)

    except ValueError as e:
        logger.info(f"Retrying with JSON-only prompt for {context}: {str(e)}")

        retry_messages = messages + [
            {
                "role": "user",
                "content": "Return valid JSON only. No commentary, no HTML outside JSON strings, no explanations. Just the JSON object."
            }
        ]

        content = await run_text(retry_messages, **opts)
        return validate_json_response(content, f"{context} (retry)")
