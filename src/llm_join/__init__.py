# ============================================================
# src/llm_join/__init__.py
# ============================================================

"""
LLM Join - fuzzy dataframe joins through an LLM-built key connector
"""

from .exceptions import (
    LLMJoinError,
    InvalidInputError,
    EmptyMessageError,
    ConfigurationError,
    LLMError,
    AuthenticationError,
    EndpointNotFoundError,
    ServiceError,
    LLMConnectionError,
    MalformedResponseError,
    ParseError
)

from .formatting import format_table

from .prompts import (
    build_join_prompt,
    build_check_prompt
)

from .config import (
    LLMRequestConfig,
    set_llm,
    read_config_file,
    mark_verified,
    validate_llm_config
)

from .llm import (
    ServiceStatus,
    chat_llm,
    probe_llm_service
)

from .preprocess import unique_keys

from .matching import (
    build_connector,
    parse_connector,
    check_connector,
    parse_flagged_pairs,
    filter_connector,
    join_with_connector,
    join_summary,
    llm_join
)

__version__ = "0.1.0"

__all__ = [
    # Main join function
    'llm_join',

    # Connector building and verification
    'build_connector',
    'parse_connector',
    'check_connector',
    'parse_flagged_pairs',
    'filter_connector',
    'join_with_connector',
    'join_summary',

    # Prompt utilities
    'format_table',
    'build_join_prompt',
    'build_check_prompt',
    'unique_keys',

    # LLM service
    'LLMRequestConfig',
    'ServiceStatus',
    'chat_llm',
    'probe_llm_service',
    'set_llm',
    'read_config_file',
    'mark_verified',
    'validate_llm_config',

    # Errors
    'LLMJoinError',
    'InvalidInputError',
    'EmptyMessageError',
    'ConfigurationError',
    'LLMError',
    'AuthenticationError',
    'EndpointNotFoundError',
    'ServiceError',
    'LLMConnectionError',
    'MalformedResponseError',
    'ParseError',
]
