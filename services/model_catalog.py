"""
Generator Model Catalog

Backs the searchable, paginated model dropdown of the upload form. The
default catalog is seeded at startup when the table is empty.
"""

import logging
from typing import Optional

from core.config import settings
from core.models import GeneratorModelView
from providers.gateway import DataGateway, ilike

logger = logging.getLogger(__name__)

DEFAULT_MODELS = [
    ("GPT-4o", "OpenAI", "text"),
    ("GPT-4o mini", "OpenAI", "text"),
    ("o3", "OpenAI", "text"),
    ("DALL-E 3", "OpenAI", "image"),
    ("Sora", "OpenAI", "video"),
    ("Claude Sonnet", "Anthropic", "text"),
    ("Claude Haiku", "Anthropic", "text"),
    ("Gemini 1.5 Pro", "Google", "text"),
    ("Gemini 1.5 Flash", "Google", "text"),
    ("Imagen 3", "Google", "image"),
    ("Veo", "Google", "video"),
    ("Llama 3.1 70B", "Meta", "text"),
    ("Llama 3.1 8B", "Meta", "text"),
    ("Mistral Large", "Mistral AI", "text"),
    ("Mixtral 8x7B", "Mistral AI", "text"),
    ("Stable Diffusion XL", "Stability AI", "image"),
    ("Stable Diffusion 3", "Stability AI", "image"),
    ("Stable Audio", "Stability AI", "audio"),
    ("Midjourney v6", "Midjourney", "image"),
    ("Runway Gen-3", "Runway", "video"),
    ("Suno v3", "Suno", "audio"),
    ("Udio", "Udio", "audio"),
    ("Grok", "xAI", "text"),
    ("DeepSeek V3", "DeepSeek", "text"),
    ("Qwen 2.5", "Alibaba", "text"),
]


class ModelCatalog:
    def __init__(self, gateway: DataGateway, page_size: Optional[int] = None):
        self.gateway = gateway
        self.page_size = page_size or settings.model_page_size

    async def search(self, text: str = "", offset: int = 0) -> dict:
        """One dropdown page: {"models": [...], "has_more": bool, "offset": int}"""
        query = self.gateway.table("generator_models").eq("is_active", True)
        text = (text or "").strip()
        if text:
            query.or_(ilike("name", text), ilike("provider", text))

        rows = await (
            query.order("sort_order").order("name").range(offset, offset + self.page_size - 1).select()
        )
        return {
            "models": [GeneratorModelView.model_validate(row) for row in rows],
            "has_more": len(rows) == self.page_size,
            "offset": offset,
        }

    async def seed_defaults(self) -> int:
        if await self.gateway.table("generator_models").count() > 0:
            return 0

        rows = [
            {"name": name, "provider": provider, "category": category, "sort_order": index}
            for index, (name, provider, category) in enumerate(DEFAULT_MODELS)
        ]
        await self.gateway.table("generator_models").insert(rows)
        logger.info(f"Seeded {len(rows)} generator models")
        return len(rows)

