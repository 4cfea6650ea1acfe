# Copyright 2024 Hathor Labs
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
import logging.config
from collections import OrderedDict
from enum import IntEnum, auto
from typing import Any

import structlog
from structlog.typing import EventDict
from typing_extensions import assert_never


class LoggingOutput(IntEnum):
    NULL = auto()
    PRETTY = auto()
    JSON = auto()


def setup_logging(
    *,
    logging_output: LoggingOutput = LoggingOutput.PRETTY,
    debug: bool = False,
    extra_log_info: dict[str, str] | None = None,
) -> None:
    """Configure structlog on top of the stdlib logging module.

    Every `get_logger()` in veil goes through the processors set here; foreign stdlib loggers share the same
    handlers and timestamp format.
    """
    timestamper = structlog.processors.TimeStamper(fmt='%Y-%m-%d %H:%M:%S')

    # processors for foreign (stdlib) loggers
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        timestamper,
    ]

    match logging_output:
        case LoggingOutput.NULL:
            handlers = ['null']
        case LoggingOutput.PRETTY:
            handlers = ['pretty']
        case LoggingOutput.JSON:
            handlers = ['json']
        case _:
            assert_never(logging_output)

    # See: https://docs.python.org/3/library/logging.config.html#configuration-dictionary-schema
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'colored': {
                '()': structlog.stdlib.ProcessorFormatter,
                'processor': structlog.dev.ConsoleRenderer(colors=True),
                'foreign_pre_chain': pre_chain,
            },
            'json': {
                '()': structlog.stdlib.ProcessorFormatter,
                'processor': structlog.processors.JSONRenderer(),
                'foreign_pre_chain': pre_chain,
            },
        },
        'handlers': {
            'pretty': {
                'level': 'DEBUG',
                'class': 'logging.StreamHandler',
                'formatter': 'colored',
            },
            'json': {
                'level': 'DEBUG',
                'class': 'logging.StreamHandler',
                'formatter': 'json',
            },
            'null': {
                'class': 'logging.NullHandler',
            },
        },
        'loggers': {
            '': {
                'handlers': handlers,
                'level': 'DEBUG' if debug else 'INFO',
            },
        },
    })

    extra_log_info = extra_log_info or {}

    def add_extra_log_info(_logger: logging.Logger, _method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in extra_log_info.items():
            assert key not in event_dict, 'extra log info conflicting with existing log key'
            event_dict[key] = value
        return event_dict

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_extra_log_info,
        structlog.stdlib.PositionalArgumentsFormatter(),
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        context_class=OrderedDict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
