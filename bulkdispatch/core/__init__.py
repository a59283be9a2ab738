# bulkdispatch/core/__init__.py
"""
Core dispatch pipeline -- transport- and storage-agnostic.

Canonical imports:
    from bulkdispatch.core import DispatchController, StartCommand
    from bulkdispatch.core.domain import RecipientStatus, SessionContext
    from bulkdispatch.core.ports import AsyncRecipientStore, MessageTransport
"""
from bulkdispatch.core.domain import (  # noqa: F401
    RecipientStatus,
    RecipientRecord,
    RecipientSource,
    StartCommand,
    DispatchState,
    Progress,
    SessionContext,
    SessionResult,
)
from bulkdispatch.core.errors import (  # noqa: F401
    DispatchError,
    StoreError,
    ValidationError,
    TransportError,
    TransportConnectError,
    TransportQueryError,
    TransportSendError,
)
from bulkdispatch.core.ports import (  # noqa: F401
    AsyncRecipientStore,
    MessageTransport,
    EventSink,
    TransportEvent,
)
from bulkdispatch.core.number_generator import NumberGenerator  # noqa: F401
from bulkdispatch.core.recipients import parse_number_list, resolve_recipients  # noqa: F401
from bulkdispatch.core.controller import DispatchController  # noqa: F401
