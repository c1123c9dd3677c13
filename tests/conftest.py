"""
Shared Test Fixtures and Utilities for the USDC Wallet Bot

Key Components:
1. Injectable clock for TTL and window expiry
2. FakeApi standing in for the gateway's HTTP transport (no network)
3. Telegram object factories backed by one mock bot
4. A fully wired ServiceContainer with a fake relay factory
"""

import os
import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")

from telegram import CallbackQuery, Chat, Message, Update, User as TelegramUser  # noqa: E402

from config import Config  # noqa: E402
from scenes import all_scenes  # noqa: E402
from services.api_gateway import ApiGateway  # noqa: E402
from services.credential_store import CredentialStore  # noqa: E402
from services.kv_store import InMemoryKVStore  # noqa: E402
from services.rate_limiter import ApiRateLimiter  # noqa: E402
from services.service_container import ServiceContainer  # noqa: E402

TEST_USER_ID = 424242


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class ApiCall:
    method: str
    path: str
    headers: Dict[str, str]
    payload: Optional[Dict[str, Any]]
    params: Optional[Dict[str, Any]]


class FakeApi:
    """
    Replacement for ``ApiGateway._send``.

    Routes are keyed by (METHOD, path). A route holds either one response
    (status, body) reused for every call, a list consumed in order, or an
    exception instance to raise.
    """

    def __init__(self, base_url: str = Config.API_BASE_URL):
        self.base_url = base_url.rstrip("/")
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[ApiCall] = []

    def add(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        self.routes[(method.upper(), path)] = (status, body)

    def add_sequence(self, method: str, path: str, responses: List[Any]) -> None:
        self.routes[(method.upper(), path)] = list(responses)

    def add_error(self, method: str, path: str, error: Exception) -> None:
        self.routes[(method.upper(), path)] = error

    def calls_to(self, method: str, path: str) -> List[ApiCall]:
        return [call for call in self.calls if call.method == method.upper() and call.path == path]

    async def __call__(self, method, url, headers, payload, params):
        path = url[len(self.base_url):]
        self.calls.append(ApiCall(method.upper(), path, dict(headers), payload, params))
        route = self.routes.get((method.upper(), path))
        if route is None:
            return 404, {"message": f"No route for {method} {path}"}
        if isinstance(route, Exception):
            raise route
        if isinstance(route, list):
            return route.pop(0)
        return route


class FakeRelay:
    """Stands in for PusherRelay; delivers payloads straight to the handler"""

    instances: List["FakeRelay"] = []

    def __init__(self, user_id, organization_id, access_token, handler, loop):
        self.user_id = user_id
        self.organization_id = organization_id
        self.access_token = access_token
        self.handler = handler
        self.loop = loop
        self.connected = False
        FakeRelay.instances.append(self)

    def connect(self):
        self.connected = True

    def disconnect(self):
        self.connected = False

    async def handle_payload(self, data):
        return await self.handler(self.user_id, data)


class TelegramObjectFactory:
    """Factory for creating realistic Telegram objects for testing"""

    def __init__(self):
        self._message_ids = itertools.count(100)
        self._update_ids = itertools.count(1)
        self._mock_bot = self._create_bot_mock()

    def _create_bot_mock(self):
        bot_mock = MagicMock()
        bot_mock.send_message = AsyncMock(side_effect=self._sent_message)
        bot_mock.edit_message_text = AsyncMock(return_value=True)
        bot_mock.answer_callback_query = AsyncMock(return_value=True)
        bot_mock.delete_message = AsyncMock(return_value=True)
        bot_mock.id = 123456789
        bot_mock.username = "test_bot"
        bot_mock.first_name = "Test Bot"
        return bot_mock

    def _sent_message(self, *args, **kwargs):
        message_response = MagicMock()
        message_response.message_id = next(self._message_ids)
        message_response.text = kwargs.get("text")
        return message_response

    def get_bot_mock(self):
        return self._mock_bot

    def create_user(self, telegram_id: int = TEST_USER_ID, first_name: str = "Test") -> TelegramUser:
        return TelegramUser(id=telegram_id, is_bot=False, first_name=first_name, language_code="en")

    def create_chat(self, chat_id: int = TEST_USER_ID) -> Chat:
        return Chat(id=chat_id, type="private")

    def create_message(self, text: str, user: TelegramUser = None, message_id: int = None) -> Message:
        user = user or self.create_user()
        message = Message(
            message_id=message_id if message_id is not None else next(self._message_ids),
            from_user=user,
            date=datetime.now(timezone.utc),
            chat=self.create_chat(user.id),
            text=text,
        )
        message.set_bot(self._mock_bot)
        return message

    def create_callback_query(self, data: str, user: TelegramUser = None, message: Message = None) -> CallbackQuery:
        user = user or self.create_user()
        message = message or self.create_message("Previous prompt", user=user)
        callback_query = CallbackQuery(
            id=str(next(self._update_ids)),
            from_user=user,
            chat_instance="test-chat-instance",
            data=data,
            message=message,
        )
        callback_query.set_bot(self._mock_bot)
        return callback_query

    def text_update(self, text: str, user: TelegramUser = None) -> Update:
        update = Update(update_id=next(self._update_ids), message=self.create_message(text, user=user))
        update.set_bot(self._mock_bot)
        return update

    def callback_update(self, data: str, user: TelegramUser = None, message: Message = None) -> Update:
        update = Update(update_id=next(self._update_ids), callback_query=self.create_callback_query(data, user, message))
        update.set_bot(self._mock_bot)
        return update

    def create_context(self, services=None, args: Optional[List[str]] = None):
        context = MagicMock()
        context.bot = self._mock_bot
        context.application.bot_data = {"services": services}
        context.args = args or []
        return context


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv_store(clock):
    return InMemoryKVStore(clock=clock)


@pytest.fixture
def credentials(kv_store, clock):
    return CredentialStore(kv_store, clock=clock)


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def gateway(credentials, clock, fake_api):
    api_gateway = ApiGateway(credentials, ApiRateLimiter(clock=clock))
    api_gateway._send = fake_api
    return api_gateway


@pytest.fixture
def telegram_factory():
    return TelegramObjectFactory()


@pytest.fixture
def mock_bot(telegram_factory):
    return telegram_factory.get_bot_mock()


@pytest.fixture
def services(mock_bot, fake_api):
    FakeRelay.instances = []
    container = ServiceContainer(mock_bot, store=InMemoryKVStore(), relay_factory=FakeRelay)
    container.gateway._send = fake_api
    container.register_scenes(all_scenes())
    return container


@pytest.fixture
def context(telegram_factory, services):
    return telegram_factory.create_context(services)


async def log_in(services, user_id: int = TEST_USER_ID, lifetime: int = 86400) -> Dict[str, Any]:
    return await services.credentials.store_token(
        user_id, {"accessToken": "access-token-123", "refreshToken": "refresh-token-456", "expiresIn": lifetime}
    )


def sent_texts(bot) -> List[str]:
    """Every text the bot sent or edited, in call order"""
    texts = []
    for call in bot.method_calls:
        name = call[0]
        if name in ("send_message", "edit_message_text"):
            kwargs = call[2]
            texts.append(kwargs.get("text") if "text" in kwargs else call[1][0])
    return texts


def last_text(bot) -> str:
    texts = sent_texts(bot)
    return texts[-1] if texts else ""


def buttons_of(reply_markup) -> List[str]:
    if reply_markup is None:
        return []
    return [button.callback_data for row in reply_markup.inline_keyboard for button in row]


def last_markup(bot):
    for call in reversed(bot.method_calls):
        if call[0] in ("send_message", "edit_message_text"):
            return call[2].get("reply_markup")
    return None


@pytest.fixture
def run_steps(services, telegram_factory, context):
    """Feed text or button inputs through the scene engine in order"""

    async def _run(*inputs: str) -> None:
        for item in inputs:
            if item.startswith("btn:"):
                update = telegram_factory.callback_update(item[4:])
            else:
                update = telegram_factory.text_update(item)
            await services.scene_engine.handle_update(update, context)
            await asyncio.sleep(0)

    return _run
