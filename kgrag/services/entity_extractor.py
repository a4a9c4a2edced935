"""Entity extraction service using LLM."""

import json
from typing import Any

import openai
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from kgrag.domain import ExtractedEntity, ExtractedRelationship, ExtractionResult
from kgrag.exceptions import ProviderError
from kgrag.services.embedding_service import TRANSIENT_ERRORS

SYSTEM_PROMPT = """You are a precise entity and relationship extraction system.
Analyze the text and extract:
1. Named entities (people, places, organizations, dates, key concepts)
2. Relationships between those entities

Respond only with a JSON object of this shape:
{
  "entities": [{"text": "entity", "type": "PERSON|LOCATION|ORGANIZATION|DATE|CONCEPT|OTHER"}],
  "relationships": [{"source": "entity1", "relationship": "action", "target": "entity2"}]
}

Guidelines:
- Use the entity text exactly as it appears in the input
- Only report relationships whose source and target are listed entities
- Use short verb phrases for relationship labels (e.g. "capital_of", "works_for")
"""


class EntityExtractor:
    """Service for extracting entities and relationships from text using LLM."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4-turbo-preview",
        max_entities: int = 50,
        propagate_errors: bool = False,
    ) -> None:
        """Initialize entity extractor."""
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model
        self.max_entities = max_entities
        self.propagate_errors = propagate_errors
        logger.info(f"Initialized EntityExtractor with model: {model}")

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _complete(self, text: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Text:\n\n{text}"},
            ],
            temperature=0.0,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    async def extract(self, text: str) -> ExtractionResult:
        """Extract entities and relationships from text.

        Failures yield an empty result unless the extractor was built with
        ``propagate_errors=True``, in which case ``ProviderError`` is raised.
        """
        if not text or not text.strip():
            return ExtractionResult()

        try:
            content = await self._complete(text)
            result = self.parse_response(content)
        except Exception as e:
            logger.error(f"Error extracting entities: {e}")
            if self.propagate_errors:
                raise ProviderError(f"Entity extraction failed: {e}", provider="extraction") from e
            return ExtractionResult()

        logger.info(
            f"Extracted {len(result.entities)} entities and {len(result.relationships)} relationships"
        )
        return result

    def parse_response(self, content: str) -> ExtractionResult:
        """Parse the model's reply into an extraction result."""
        try:
            data: Any = json.loads(content)
        except json.JSONDecodeError:
            # Plain comma separated entity list
            names = [part.strip() for part in content.split(",") if part.strip()]
            return ExtractionResult(
                entities=[ExtractedEntity(text=name) for name in names[: self.max_entities]]
            )

        if isinstance(data, list):
            data = {"entities": data}
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected extraction payload type: {type(data).__name__}")

        entities = []
        for item in data.get("entities", [])[: self.max_entities]:
            if isinstance(item, str):
                entities.append(ExtractedEntity(text=item))
            elif isinstance(item, dict) and item.get("text"):
                entities.append(
                    ExtractedEntity(text=str(item["text"]), type=str(item.get("type") or "OTHER"))
                )

        relationships = []
        for item in data.get("relationships", []):
            if not isinstance(item, dict):
                continue
            source, label, target = item.get("source"), item.get("relationship"), item.get("target")
            if source and label and target:
                relationships.append(
                    ExtractedRelationship(source=str(source), relationship=str(label), target=str(target))
                )

        return ExtractionResult(entities=entities, relationships=relationships)
