"""
Централизованная конфигурация приложения
=========================================
Все настройки бота поддержки в одном месте.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Конфигурация приложения"""

    # === Telegram ===
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # === Admin ===
    # Список admin user_id через запятую: "123456,789012"
    ADMIN_IDS: set[int] = set()
    _admin_ids_raw = os.getenv("ADMIN_IDS", "")
    if _admin_ids_raw:
        ADMIN_IDS = {int(x.strip()) for x in _admin_ids_raw.split(",") if x.strip().isdigit()}
    # Чат для отчётов (ошибки рассылки, результаты admin-команд)
    ADMIN_CHAT_ID: int = int(os.getenv("ADMIN_CHAT_ID", "0"))

    # === OpenAI ===
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")
    OPENAI_IMAGE_MODEL: str = os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3")
    IMAGES_ENABLED: bool = _env_bool("IMAGES_ENABLED", "true")

    # === OpenAI Limits ===
    MAX_TOKENS: int = int(os.getenv("MAX_TOKENS", "1500"))
    TEMPERATURE: float = float(os.getenv("TEMPERATURE", "0.8"))

    # === Retry settings ===
    API_MAX_RETRIES: int = int(os.getenv("API_MAX_RETRIES", "3"))
    API_RETRY_DELAY: float = float(os.getenv("API_RETRY_DELAY", "1.0"))
    API_TIMEOUT: int = int(os.getenv("API_TIMEOUT", "60"))

    # Строка-маркер ошибки генерации
    LLM_ERROR_SENTINEL: str = os.getenv("LLM_ERROR_SENTINEL", "HF_JSON_ERROR")

    # === Telegram send retry ===
    SEND_MAX_ATTEMPTS: int = int(os.getenv("SEND_MAX_ATTEMPTS", "10"))
    SEND_RETRY_INTERVAL: float = float(os.getenv("SEND_RETRY_INTERVAL", "5"))
    JOY_SEND_MAX_ATTEMPTS: int = int(os.getenv("JOY_SEND_MAX_ATTEMPTS", "5"))
    JOY_SEND_RETRY_INTERVAL: float = float(os.getenv("JOY_SEND_RETRY_INTERVAL", "3"))

    # === Storage ===
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "./data/froggy.db")

    # === Schedule ===
    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "Europe/Moscow")
    EVENING_TIME: str = os.getenv("EVENING_TIME", "22:00")
    MORNING_TIME: str = os.getenv("MORNING_TIME", "09:00")
    ANGRY_CHECK_TIME: str = os.getenv("ANGRY_CHECK_TIME", "12:00")
    JOY_WEEKDAY: int = int(os.getenv("JOY_WEEKDAY", "6"))  # 0 = понедельник
    JOY_TIME: str = os.getenv("JOY_TIME", "19:00")

    # === Reminders / sweep ===
    REMINDER_DELAY_MINUTES: float = float(os.getenv("REMINDER_DELAY_MINUTES", "30"))
    PRACTICE_POSTPONE_MINUTES: float = float(os.getenv("PRACTICE_POSTPONE_MINUTES", "60"))
    UNCOMPLETED_CHECK_INTERVAL_MINUTES: int = int(os.getenv("UNCOMPLETED_CHECK_INTERVAL_MINUTES", "30"))
    UNCOMPLETED_MIN_AGE_MINUTES: int = int(os.getenv("UNCOMPLETED_MIN_AGE_MINUTES", "10"))
    UNCOMPLETED_MAX_AGE_DAYS: int = int(os.getenv("UNCOMPLETED_MAX_AGE_DAYS", "7"))

    # === Features ===
    AUTO_RESPONSES_ENABLED: bool = _env_bool("AUTO_RESPONSES_ENABLED", "false")
    JOY_BUTTONS_LIMIT: int = int(os.getenv("JOY_BUTTONS_LIMIT", "10"))

    # === Workflow engine (n8n) ===
    WORKFLOW_SERVER_ENABLED: bool = _env_bool("WORKFLOW_SERVER_ENABLED", "true")
    WORKFLOW_SERVER_HOST: str = os.getenv("WORKFLOW_SERVER_HOST", "0.0.0.0")
    WORKFLOW_SERVER_PORT: int = int(os.getenv("WORKFLOW_SERVER_PORT", "3001"))
    N8N_BASE_URL: str = os.getenv("N8N_BASE_URL", "http://localhost:5678")
    WORKFLOW_SESSION_TTL: int = int(os.getenv("WORKFLOW_SESSION_TTL", "3600"))  # секунд
    WORKFLOW_RESUME_TIMEOUT: int = int(os.getenv("WORKFLOW_RESUME_TIMEOUT", "30"))

    # === Limits ===
    MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "4000"))
    MAX_HISTORY_LENGTH: int = int(os.getenv("MAX_HISTORY_LENGTH", "20"))

    # === Logging ===
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def is_admin(cls, user_id: int) -> bool:
        """Проверяет, является ли пользователь админом"""
        return user_id in cls.ADMIN_IDS

    @classmethod
    def validate(cls) -> list[str]:
        """Проверяет обязательные настройки, возвращает список ошибок"""
        errors = []
        if not cls.TELEGRAM_BOT_TOKEN:
            errors.append("TELEGRAM_BOT_TOKEN не установлен")
        if not cls.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY не установлен")
        for name in ("EVENING_TIME", "MORNING_TIME", "ANGRY_CHECK_TIME", "JOY_TIME"):
            value = getattr(cls, name)
            parts = value.split(":")
            if len(parts) != 2 or not all(p.isdigit() for p in parts):
                errors.append(f"{name} должно быть в формате HH:MM, получено {value!r}")
        return errors


# Синглтон для удобного импорта
config = Config()
