"""
OpenAI Client Service
=====================
Обёртка над OpenAI API с retry, таймаутами и обработкой ошибок.
Текст: generate() -> строка или маркер ошибки. Картинки: generate_image() -> bytes.
"""

import asyncio
import logging
import base64
from typing import Optional
from openai import AsyncOpenAI, APIError, RateLimitError, APIConnectionError
from config import config
from utils.prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class OpenAIError(Exception):
    """Транспортная ошибка OpenAI (после всех повторов)"""
    pass


class OpenAIClient:
    """Клиент для работы с OpenAI API с retry и обработкой ошибок"""

    def __init__(self):
        self.client = AsyncOpenAI(
            api_key=config.OPENAI_API_KEY,
            timeout=config.API_TIMEOUT
        )
        self.model = config.OPENAI_MODEL
        self.image_model = config.OPENAI_IMAGE_MODEL
        self.max_retries = config.API_MAX_RETRIES
        self.retry_delay = config.API_RETRY_DELAY
        self.error_sentinel = config.LLM_ERROR_SENTINEL

    async def _retry_with_backoff(self, func, *args, **kwargs):
        """Выполняет функцию с exponential backoff"""
        last_error = None

        for attempt in range(self.max_retries):
            try:
                return await func(*args, **kwargs)
            except RateLimitError as e:
                last_error = e
                wait_time = self.retry_delay * (2 ** attempt)
                logger.warning(f"Rate limit, retry {attempt + 1}/{self.max_retries} через {wait_time}s")
                await asyncio.sleep(wait_time)
            except APIConnectionError as e:
                last_error = e
                wait_time = self.retry_delay * (2 ** attempt)
                logger.warning(f"Connection error, retry {attempt + 1}/{self.max_retries} через {wait_time}s")
                await asyncio.sleep(wait_time)
            except APIError as e:
                # Критичные ошибки API - не ретраим
                logger.error(f"API Error: {e}")
                raise OpenAIError(f"Ошибка API: {str(e)}")

        # Все попытки исчерпаны
        logger.error(f"All retries failed: {last_error}")
        raise OpenAIError("Сервис временно недоступен. Попробуйте позже.")

    async def generate(
        self,
        prompt: str,
        system_prompt: str = SYSTEM_PROMPT,
        temperature: float = None,
        max_tokens: int = None
    ) -> str:
        """
        Генерирует текст по промпту.

        Args:
            prompt: Запрос пользователя к модели
            system_prompt: Системный промпт
            temperature: Температура генерации
            max_tokens: Максимальное количество токенов

        Returns:
            Текст ответа или config.LLM_ERROR_SENTINEL, если модель вернула пустоту

        Raises:
            OpenAIError: сеть / API недоступны после всех повторов
        """
        temperature = temperature if temperature is not None else config.TEMPERATURE
        max_tokens = max_tokens or config.MAX_TOKENS

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]

        async def _make_request():
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
            if not response.choices:
                return None
            return response.choices[0].message.content

        content = await self._retry_with_backoff(_make_request)
        if not content or not content.strip():
            logger.warning("Модель вернула пустой ответ")
            return self.error_sentinel
        return content.strip()

    async def generate_image(self, prompt: str) -> bytes:
        """
        Генерирует картинку.

        Returns:
            PNG в байтах
        """
        async def _make_request():
            response = await self.client.images.generate(
                model=self.image_model,
                prompt=prompt,
                size="1024x1024",
                n=1,
                response_format="b64_json"
            )
            return response.data[0].b64_json

        b64_image = await self._retry_with_backoff(_make_request)
        if not b64_image:
            raise OpenAIError("Пустой ответ генерации изображения")
        return base64.b64decode(b64_image)


# Синглтон клиента
_client_instance: Optional[OpenAIClient] = None


def get_openai_client() -> OpenAIClient:
    """Возвращает синглтон OpenAI клиента"""
    global _client_instance
    if _client_instance is None:
        _client_instance = OpenAIClient()
    return _client_instance
