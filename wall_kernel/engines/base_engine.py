"""
Base class for kernel engines.
"""

import uuid
from typing import Any, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()

ConfigT = TypeVar("ConfigT", bound=BaseModel)


def build_config(config_class: Type[ConfigT], config: Optional[ConfigT], options: dict) -> ConfigT:
    """Use config as given, or build one from keyword options; mixing both overrides fields."""
    if config is None:
        return config_class(**options)
    if options:
        return config.model_copy(update=options)
    return config


class BaseEngine:
    """
    Base class for all kernel engines.

    An engine holds only its immutable config and a run id used as log
    context; every operation takes its inputs as arguments and returns a new
    result, so one engine may serve many walls and threads.
    """

    config_class: Type[BaseModel] = BaseModel

    def __init__(self, config: Optional[Any] = None, run_id: Optional[uuid.UUID] = None, **options):
        self.config = build_config(self.config_class, config, options)
        self.run_id = run_id or uuid.uuid4()

    def log_info(self, message: str, /, **context):
        """Log info message with run context."""
        logger.info(
            message,
            run_id=str(self.run_id),
            engine=self.__class__.__name__,
            **context
        )

    def log_warning(self, message: str, /, **context):
        """Log warning message with run context."""
        logger.warning(
            message,
            run_id=str(self.run_id),
            engine=self.__class__.__name__,
            **context
        )

    def log_error(self, message: str, /, **context):
        """Log error message with run context."""
        logger.error(
            message,
            run_id=str(self.run_id),
            engine=self.__class__.__name__,
            **context
        )
