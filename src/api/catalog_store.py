"""Read-only catalog lookups: style base prompts and prompt presets."""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)


@dataclass
class CatalogLookup:
    """Outcome of resolving a style slug and prompt preset id."""

    base_prompt: Optional[str] = None
    style_id: Optional[str] = None
    prompt_id: Optional[str] = None


class CatalogStore:
    """Catalog queries over the task store's database connection.

    A missing or inactive entry is not an error; it just contributes
    no base prompt.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get_style_by_slug(self, slug: str) -> dict | None:
        async with self.db.execute(
            "SELECT id, slug, name, base_prompt FROM image_styles WHERE slug = ? AND active = 1",
            (slug,),
        ) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row is not None else None

    async def get_prompt_preset(self, preset_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT id, slug, name, prompt_template, style_id FROM prompt_presets "
            "WHERE id = ? AND active = 1",
            (preset_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row is not None else None

    async def lookup_style_and_prompt(
        self, style_slug: str | None, prompt_id: str | None
    ) -> CatalogLookup:
        """Resolve the base instruction for a request.

        A matched prompt preset's template takes precedence over the
        style's base prompt.
        """
        result = CatalogLookup()

        if style_slug:
            style = await self.get_style_by_slug(style_slug)
            if style:
                result.style_id = style["id"]
                result.base_prompt = style["base_prompt"] or result.base_prompt
            else:
                logger.debug(f"No active style '{style_slug}'")

        if prompt_id:
            preset = await self.get_prompt_preset(prompt_id)
            if preset:
                result.prompt_id = preset["id"]
                result.base_prompt = preset["prompt_template"] or result.base_prompt
            else:
                logger.debug(f"No active prompt preset '{prompt_id}'")

        return result

    async def add_style(
        self, slug: str, name: str, base_prompt: str | None = None, active: bool = True
    ) -> str:
        """Insert a style and return its id."""
        style_id = str(uuid.uuid4())
        await self.db.execute(
            "INSERT INTO image_styles (id, slug, name, base_prompt, active) VALUES (?, ?, ?, ?, ?)",
            (style_id, slug, name, base_prompt, int(active)),
        )
        await self.db.commit()
        return style_id

    async def add_prompt_preset(
        self,
        name: str,
        prompt_template: str,
        slug: str | None = None,
        style_id: str | None = None,
        active: bool = True,
    ) -> str:
        """Insert a prompt preset and return its id."""
        preset_id = str(uuid.uuid4())
        await self.db.execute(
            "INSERT INTO prompt_presets (id, style_id, slug, name, prompt_template, active) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (preset_id, style_id, slug, name, prompt_template, int(active)),
        )
        await self.db.commit()
        return preset_id
