"""
Configuration Module

Loads environment variables into typed settings
"""

import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings"""

    # Supabase (insight storage)
    SUPABASE_URL: str = ''
    SUPABASE_SERVICE_ROLE_KEY: str = ''

    # OpenAI
    OPENAI_API_KEY: str = ''
    OPENAI_BASE_URL: str = 'https://api.openai.com/v1'
    INSIGHT_MODEL: str = 'gpt-4.1'  # 32k output tokens

    # Email service (source records)
    EMAIL_SERVICE_URL: str = ''
    EMAIL_SERVICE_TOKEN: str = ''

    # Pipeline limits
    MAX_CONCURRENT_AI_REQUESTS: int = 4
    MAX_CONCURRENT_THREAD_REQUESTS: int = 3
    MAX_THREADS_IN_MEMORY: int = 10
    MAX_MESSAGES_PER_THREAD_BATCH: int = 50  # email service caps pages at 100
    MAX_CHARS_PER_EMAIL_PROMPT: int = 32_000
    CHAT_COMPLETION_REQUEST_MAX_TOKENS: int = 32_000
    EXISTING_INSIGHTS_LIMIT: int = 1000

    # Server
    ENVIRONMENT: str = os.getenv('ENVIRONMENT', 'development')

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'info' if os.getenv('ENVIRONMENT') == 'production' else 'debug')

    class Config:
        env_file = '.env'
        case_sensitive = True
        extra = 'ignore'


# Create settings instance
settings = Settings()
