"""
External capability clients for the Intelligent Podcast Generator.

Text generation, embeddings and text-to-speech are injected into the
pipeline components through the small interfaces defined here, so tests and
alternative providers can replace them without touching the pipeline.
"""

import base64
import json
import math
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any

from openai import AsyncOpenAI

from errors import MalformedResponseError
from config import get_settings, get_logger, language_name

logger = get_logger(__name__)


class TextGenerator(ABC):
    """Accepts a prompt and returns free-form or JSON text."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None
    ) -> str:
        ...


class Embedder(ABC):
    """Maps texts to fixed-dimension vectors in one shared space."""

    @abstractmethod
    async def embed(self, texts: List[str]) -> List[List[float]]:
        ...

    async def embed_one(self, text: str) -> List[float]:
        vectors = await self.embed([text])
        return vectors[0]


class SpeechSynthesizer(ABC):
    """Turns text into a retrievable audio asset reference."""

    @abstractmethod
    async def synthesize(self, text: str, language: str, voice_id: str) -> str:
        ...


class OpenAITextGenerator(TextGenerator):
    """Chat completions backed text generation."""

    def __init__(self, client: AsyncOpenAI = None, model: str = None):
        self.settings = get_settings()
        self.client = client or AsyncOpenAI(api_key=self.settings.openai_api_key)
        self.model = model or self.settings.gpt_model

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.settings.generation_temperature if temperature is None else temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""


class OpenAIEmbedder(Embedder):
    """OpenAI embeddings, batched."""

    BATCH_SIZE = 100

    def __init__(self, client: AsyncOpenAI = None):
        self.settings = get_settings()
        self.client = client or AsyncOpenAI(api_key=self.settings.openai_api_key)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for i in range(0, len(texts), self.BATCH_SIZE):
            batch = texts[i:i + self.BATCH_SIZE]
            try:
                response = await self.client.embeddings.create(
                    model=self.settings.embedding_model,
                    input=batch,
                    dimensions=self.settings.embedding_dimensions
                )
            except Exception as e:
                logger.error(f"Batch embedding generation failed: {e}")
                raise
            vectors.extend(item.embedding for item in response.data)
        return vectors


class HashingEmbedder(Embedder):
    """
    Local bag-of-words embedding with hashed token buckets.

    Deterministic and network free; good enough for concept lookup when no
    embedding API is configured.
    """

    def __init__(self, dimensions: int = None):
        self.dimensions = dimensions or get_settings().hashing_dimensions

    @staticmethod
    def tokenize(text: str) -> List[str]:
        return [t for t in re.findall(r"\w+", text.lower()) if len(t) > 2]

    @staticmethod
    def hash_token(token: str) -> int:
        # djb2, 32-bit
        h = 5381
        for ch in token:
            h = ((h * 33) ^ ord(ch)) & 0xFFFFFFFF
        return h

    def vectorize(self, text: str) -> List[float]:
        vec = [0.0] * self.dimensions
        for token in self.tokenize(text):
            vec[self.hash_token(token) % self.dimensions] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        return [v / norm for v in vec]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        return [self.vectorize(t) for t in texts]


class OpenAISpeechSynthesizer(SpeechSynthesizer):
    """
    OpenAI text-to-speech returning WAV (24 kHz, 16-bit, mono PCM).

    The asset is returned inline as a ``data:audio/wav;base64,...`` reference.
    """

    def __init__(self, client: AsyncOpenAI = None, model: str = None):
        self.settings = get_settings()
        self.client = client or AsyncOpenAI(api_key=self.settings.openai_api_key)
        self.model = model or self.settings.tts_model

    async def synthesize(self, text: str, language: str, voice_id: str) -> str:
        if not text or not text.strip():
            raise ValueError("Cannot generate audio for empty text")

        response = await self.client.audio.speech.create(
            model=self.model,
            voice=voice_id,
            input=text,
            instructions=f"Speak naturally in {language_name(language)}.",
            response_format="wav"
        )
        audio = response.content
        if not audio:
            raise ValueError("No audio content received from TTS provider")

        logger.debug(f"TTS returned {len(audio)} bytes for voice {voice_id}")
        return "data:audio/wav;base64," + base64.b64encode(audio).decode("ascii")


def parse_json_object(content: str) -> Dict[str, Any]:
    """
    Parse the outermost JSON object in model output.

    Tolerates surrounding prose and code fences. Raises
    MalformedResponseError when no object can be decoded.
    """
    text = (content or "").strip()
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        raise MalformedResponseError("Model output did not contain a JSON object")
    try:
        data = json.loads(text[first:last + 1])
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Model output is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError("Model output JSON is not an object")
    return data


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity; 0.0 for mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def build_embedder() -> Embedder:
    """Create the embedder selected in settings."""
    settings = get_settings()
    if settings.embedding_backend.lower() == "hashing":
        return HashingEmbedder()
    return OpenAIEmbedder()
