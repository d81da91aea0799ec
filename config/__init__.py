"""
Configuration Management Module
Environment-driven settings for every collaborator.
"""
from .settings import (
    APISettings,
    LLMSettings,
    NotifierSettings,
    PipelineSettings,
    Settings,
    StorageSettings,
    TTSSettings,
    get_api_settings,
    get_llm_settings,
    get_notifier_settings,
    get_pipeline_settings,
    get_settings,
    get_storage_settings,
    get_tts_settings,
)

__all__ = [
    "APISettings",
    "LLMSettings",
    "NotifierSettings",
    "PipelineSettings",
    "Settings",
    "StorageSettings",
    "TTSSettings",
    "get_api_settings",
    "get_llm_settings",
    "get_notifier_settings",
    "get_pipeline_settings",
    "get_settings",
    "get_storage_settings",
    "get_tts_settings",
]
