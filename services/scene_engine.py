"""
Telegram Scene Engine - Core Architecture

Runs multi-step conversations ("scenes") such as login, send and withdraw.
At most one scene is active per chat; entering a scene discards whatever the
chat had open before, data bag included.

A scene is an ordered list of step ids. For each step the scene implements
``prompt_<step>`` (called with no input when the step is reached) and
``handle_<step>`` (called with the user's next text or button action). Both
return a ``Transition`` telling the engine what to do next; the engine owns
the cursor and the data bag, the scene only performs I/O through its
``SceneSession``.

Concurrency:
- one keyed lock per chat serialises steps, so inputs for a chat are
  processed in arrival order while other chats run in parallel
- cancellation does not take the lock: it removes the chat's state at once,
  and a step still awaiting an API call finds itself inactive afterwards and
  its result is dropped without touching the chat

Architecture:
    Update -> SceneEngine.handle_update -> Scene.handle_<step> -> Transition
           -> SceneEngine applies cursor/state change -> Scene.prompt_<step>
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from utils.callback_utils import edit_or_send, safe_answer_callback_query, truncate_message
from utils.exception_handler import (
    LOGIN_KEYBOARD,
    AuthExpired,
    NotAuthenticated,
    RateLimited,
    ValidationError,
    WalletBotError,
    describe_error,
)
from utils.keyed_locks import KeyedLockManager

logger = logging.getLogger(__name__)

CANCEL_ACTION = "cancel"
CANCEL_COMMAND = "/cancel"

# ===== SCENE ENGINE ENUMS AND TYPES =====


class SceneStatus(Enum):
    """Scene execution status"""
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"


class TransitionKind(Enum):
    ADVANCE = "advance"
    STAY = "stay"
    LEAVE = "leave"
    GOTO = "goto"
    SWITCH = "switch"


@dataclass
class Transition:
    """Outcome of a prompt or handler"""
    kind: TransitionKind
    step: Optional[str] = None
    scene_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    status: SceneStatus = SceneStatus.COMPLETED

    @classmethod
    def advance(cls) -> "Transition":
        return cls(TransitionKind.ADVANCE)

    @classmethod
    def stay(cls) -> "Transition":
        return cls(TransitionKind.STAY)

    @classmethod
    def leave(cls, status: SceneStatus = SceneStatus.COMPLETED) -> "Transition":
        return cls(TransitionKind.LEAVE, status=status)

    @classmethod
    def goto(cls, step: Any) -> "Transition":
        return cls(TransitionKind.GOTO, step=_step_id(step))

    @classmethod
    def switch(cls, scene_id: str, data: Optional[Dict[str, Any]] = None) -> "Transition":
        """Leave this scene and enter ``scene_id`` with ``data`` as its initial bag"""
        return cls(TransitionKind.SWITCH, scene_id=scene_id, data=data)


@dataclass
class SceneInput:
    """Free text or a button action; both empty means 'render the prompt'"""
    text: Optional[str] = None
    action: Optional[str] = None
    message_id: Optional[int] = None


@dataclass
class SceneState:
    """Current state of a scene instance"""
    scene_id: str
    chat_id: int
    user_id: int
    current_step: str
    status: SceneStatus = SceneStatus.ACTIVE
    data: Dict[str, Any] = field(default_factory=dict)
    message_id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


def _step_id(step: Any) -> str:
    return step.value if isinstance(step, Enum) else str(step)


def is_cancel_command(text: Optional[str]) -> bool:
    """True for /cancel, including the /cancel@botname form used in groups"""
    if not text or not text.strip():
        return False
    return text.strip().split()[0].split("@")[0].lower() == CANCEL_COMMAND


def cancel_button(label: str = "❌ Cancel") -> InlineKeyboardButton:
    return InlineKeyboardButton(label, callback_data=CANCEL_ACTION)


def cancel_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[cancel_button()]])


# ===== SCENE BASE CLASS =====


class Scene:
    """Base class for scene definitions"""

    scene_id: str = ""
    steps: Sequence[Any] = ()
    # Button actions this scene consumes; anything else abandons the scene
    actions: Sequence[str] = ()
    action_prefixes: Sequence[str] = ()
    cancel_text: str = "❌ Operation cancelled."

    @property
    def step_ids(self) -> List[str]:
        return [_step_id(step) for step in self.steps]

    @property
    def initial_step(self) -> str:
        return self.step_ids[0]

    def handles_action(self, action: str) -> bool:
        return action in self.actions or any(action.startswith(prefix) for prefix in self.action_prefixes)

    async def prompt(self, session: "SceneSession", step: str) -> Transition:
        method = getattr(self, f"prompt_{step}", None)
        if method is None:
            return Transition.stay()
        return await method(session) or Transition.stay()

    async def handle(self, session: "SceneSession", step: str, scene_input: SceneInput) -> Transition:
        method = getattr(self, f"handle_{step}", None)
        if method is None:
            logger.error(f"Scene {self.scene_id} has no handler for step {step}")
            return Transition.stay()
        return await method(session, scene_input) or Transition.stay()


# ===== SCENE SESSION =====


class SceneSession:
    """What a step may touch: its data bag, the chat, and the services"""

    def __init__(self, engine: "SceneEngine", state: SceneState, bot: Bot):
        self.engine = engine
        self.state = state
        self.bot = bot

    @property
    def data(self) -> Dict[str, Any]:
        return self.state.data

    @property
    def user_id(self) -> int:
        return self.state.user_id

    @property
    def chat_id(self) -> int:
        return self.state.chat_id

    @property
    def services(self):
        return self.engine.services

    @property
    def is_active(self) -> bool:
        return self.engine.state_manager.get_active_scene(self.state.chat_id) is self.state

    async def reply(self, text: str, reply_markup=None, parse_mode: Optional[str] = ParseMode.MARKDOWN) -> Optional[int]:
        """Send a new message and anchor later edits on it"""
        if not self.is_active:
            logger.debug(f"Dropping reply for inactive scene {self.state.scene_id} in chat {self.chat_id}")
            return None
        message = await self.bot.send_message(
            chat_id=self.chat_id, text=truncate_message(text), reply_markup=reply_markup, parse_mode=parse_mode
        )
        self.state.message_id = message.message_id
        return message.message_id

    async def edit_or_send(self, text: str, reply_markup=None, parse_mode: Optional[str] = ParseMode.MARKDOWN) -> Optional[int]:
        """Edit the anchored prompt, falling back to a new message and re-anchoring"""
        if not self.is_active:
            logger.debug(f"Dropping edit for inactive scene {self.state.scene_id} in chat {self.chat_id}")
            return None
        self.state.message_id = await edit_or_send(
            self.bot,
            self.chat_id,
            self.state.message_id,
            truncate_message(text),
            reply_markup=reply_markup,
            parse_mode=parse_mode,
        )
        return self.state.message_id


# ===== SCENE STATE MANAGER =====


class SceneStateManager:
    """Manages scene state for every chat"""

    def __init__(self):
        self._active_scenes: Dict[int, SceneState] = {}

    def create_scene_instance(
        self,
        scene_id: str,
        chat_id: int,
        user_id: int,
        initial_step: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> SceneState:
        """Create a new scene instance, discarding any scene the chat had open"""
        self.cleanup_chat_scene(chat_id)
        scene_state = SceneState(
            scene_id=scene_id,
            chat_id=chat_id,
            user_id=user_id,
            current_step=initial_step,
            data=dict(data or {}),
        )
        self._active_scenes[chat_id] = scene_state
        logger.info(f"Created scene instance: {scene_id} for chat {chat_id}")
        return scene_state

    def get_active_scene(self, chat_id: int) -> Optional[SceneState]:
        return self._active_scenes.get(chat_id)

    def update_scene_step(self, scene_state: SceneState, new_step: str) -> None:
        scene_state.current_step = new_step
        scene_state.updated_at = datetime.utcnow()
        logger.info(f"Updated scene {scene_state.scene_id} to step {new_step} for chat {scene_state.chat_id}")

    def mark_scene_completed(self, chat_id: int, status: SceneStatus) -> Optional[SceneState]:
        """Remove the chat's scene, recording how it ended"""
        scene = self._active_scenes.pop(chat_id, None)
        if scene is None:
            return None
        scene.status = status
        scene.updated_at = datetime.utcnow()
        logger.info(f"Scene {scene.scene_id} completed with status {status.value} for chat {chat_id}")
        return scene

    def cleanup_chat_scene(self, chat_id: int) -> None:
        if chat_id in self._active_scenes:
            logger.info(f"Cleaning up active scene {self._active_scenes[chat_id].scene_id} for chat {chat_id}")
            self.mark_scene_completed(chat_id, SceneStatus.ABANDONED)


# ===== SCENE ENGINE CORE =====


class SceneEngine:
    """Core Scene Engine - orchestrates all scene operations"""

    def __init__(self, services: Any = None):
        self.services = services
        self.state_manager = SceneStateManager()
        self.scene_registry: Dict[str, Scene] = {}
        self._chat_locks = KeyedLockManager()

    def register_scene(self, scene: Scene) -> None:
        self.scene_registry[scene.scene_id] = scene
        logger.info(f"Registered scene: {scene.scene_id}")

    def get_scene_status(self, chat_id: int) -> Optional[Dict[str, Any]]:
        scene_state = self.state_manager.get_active_scene(chat_id)
        if not scene_state:
            return None
        return {
            "scene_id": scene_state.scene_id,
            "current_step": scene_state.current_step,
            "status": scene_state.status.value,
            "data": scene_state.data,
        }

    async def enter(
        self,
        scene_id: str,
        chat_id: int,
        user_id: int,
        bot: Bot,
        data: Optional[Dict[str, Any]] = None,
    ) -> SceneState:
        """Start ``scene_id`` for the chat with a fresh data bag and run its first step"""
        scene = self.scene_registry.get(scene_id)
        if scene is None:
            raise KeyError(f"Scene not found: {scene_id}")

        async with self._chat_locks.lock(chat_id):
            scene_state = self.state_manager.create_scene_instance(
                scene_id, chat_id, user_id, scene.initial_step, data
            )
            logger.info(f"🎬 SCENE_ENTER: {scene_id} chat={chat_id} user={user_id}")
            await self._run(scene_state, None, bot)
        return scene_state

    async def cancel(self, chat_id: int, bot: Bot, message_id: Optional[int] = None) -> bool:
        """Destroy the chat's scene immediately, without waiting for a running step"""
        scene_state = self.state_manager.mark_scene_completed(chat_id, SceneStatus.CANCELLED)
        if scene_state is None:
            return False

        scene = self.scene_registry.get(scene_state.scene_id)
        text = scene.cancel_text if scene else "❌ Operation cancelled."
        logger.info(f"🛑 SCENE_CANCELLED: {scene_state.scene_id} chat={chat_id} step={scene_state.current_step}")
        await edit_or_send(bot, chat_id, message_id, text)
        return True

    async def handle_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
        """
        Offer an update to the chat's active scene.

        Returns True when the update was consumed. Commands other than
        /cancel and buttons the scene does not own abandon the scene and
        return False so regular handlers can process them.
        """
        chat = update.effective_chat
        user = update.effective_user
        if chat is None or user is None:
            return False

        query = update.callback_query
        text = None
        action = None
        if query is not None:
            action = query.data
            if not action:
                return False
        elif update.message is not None and update.message.text:
            text = update.message.text
        else:
            return False

        scene_state = self.state_manager.get_active_scene(chat.id)

        # Cancellation wins over any step-local interpretation
        if is_cancel_command(text) or action == CANCEL_ACTION:
            if scene_state is None:
                return False
            if query is not None:
                await safe_answer_callback_query(query)
            anchor = query.message.message_id if query is not None and query.message else None
            await self.cancel(chat.id, context.bot, anchor)
            return True

        if scene_state is None:
            return False

        scene = self.scene_registry.get(scene_state.scene_id)
        if scene is None:
            logger.error(f"Scene definition not found: {scene_state.scene_id}")
            self.state_manager.mark_scene_completed(chat.id, SceneStatus.FAILED)
            return False

        if (text is not None and text.startswith("/")) or (action is not None and not scene.handles_action(action)):
            logger.info(f"Input {text or action!r} abandons scene {scene_state.scene_id} for chat {chat.id}")
            self.state_manager.mark_scene_completed(chat.id, SceneStatus.ABANDONED)
            return False

        async with self._chat_locks.lock(chat.id):
            if self.state_manager.get_active_scene(chat.id) is not scene_state:
                # Cancelled or replaced while this input waited for the lock
                if query is not None:
                    await safe_answer_callback_query(query)
                return True

            scene_input = SceneInput(text=text, action=action)
            if query is not None:
                await safe_answer_callback_query(query)
                if query.message is not None:
                    scene_input.message_id = query.message.message_id
                    scene_state.message_id = query.message.message_id
            await self._run(scene_state, scene_input, context.bot)
        return True

    async def _run(self, scene_state: SceneState, scene_input: Optional[SceneInput], bot: Bot) -> None:
        """Execute the current step and apply transitions until the scene waits or ends"""
        scene = self.scene_registry[scene_state.scene_id]
        session = SceneSession(self, scene_state, bot)

        while True:
            step = scene_state.current_step
            try:
                if scene_input is None:
                    transition = await scene.prompt(session, step)
                else:
                    transition = await scene.handle(session, step, scene_input)
            except (ValidationError, RateLimited) as e:
                logger.info(f"Step {scene.scene_id}/{step} rejected input for chat {scene_state.chat_id}: {e.message}")
                await self._notify(session, describe_error(e))
                return
            except (NotAuthenticated, AuthExpired) as e:
                logger.warning(f"Auth failure in {scene.scene_id}/{step} for user {scene_state.user_id}: {e.message}")
                await self._notify(session, describe_error(e), LOGIN_KEYBOARD)
                self._finish(scene_state, SceneStatus.FAILED)
                return
            except WalletBotError as e:
                logger.error(f"❌ SCENE_ERROR: {scene.scene_id}/{step} chat={scene_state.chat_id}: {e.message}")
                await self._notify(session, describe_error(e))
                self._finish(scene_state, SceneStatus.FAILED)
                return
            except Exception as e:
                logger.exception(f"❌ SCENE_CRASH: {scene.scene_id}/{step} chat={scene_state.chat_id}: {e}")
                await self._notify(session, describe_error(e))
                self._finish(scene_state, SceneStatus.FAILED)
                return

            if not session.is_active:
                logger.info(f"Discarding result of {scene.scene_id}/{step}: scene no longer active in chat {scene_state.chat_id}")
                return

            scene_input = None
            if transition.kind is TransitionKind.STAY:
                return
            if transition.kind is TransitionKind.LEAVE:
                self._finish(scene_state, transition.status)
                return
            if transition.kind is TransitionKind.ADVANCE:
                step_ids = scene.step_ids
                index = step_ids.index(step) + 1
                if index >= len(step_ids):
                    self._finish(scene_state, SceneStatus.COMPLETED)
                    return
                self.state_manager.update_scene_step(scene_state, step_ids[index])
                continue
            if transition.kind is TransitionKind.GOTO:
                self.state_manager.update_scene_step(scene_state, transition.step)
                continue
            if transition.kind is TransitionKind.SWITCH:
                next_scene = self.scene_registry[transition.scene_id]
                message_id = scene_state.message_id
                scene_state = self.state_manager.create_scene_instance(
                    next_scene.scene_id, scene_state.chat_id, scene_state.user_id, next_scene.initial_step, transition.data
                )
                scene_state.message_id = message_id
                logger.info(f"🎬 SCENE_SWITCH: {scene.scene_id} -> {next_scene.scene_id} chat={scene_state.chat_id}")
                scene = next_scene
                session = SceneSession(self, scene_state, bot)

    def _finish(self, scene_state: SceneState, status: SceneStatus) -> None:
        if self.state_manager.get_active_scene(scene_state.chat_id) is scene_state:
            self.state_manager.mark_scene_completed(scene_state.chat_id, status)

    async def _notify(self, session: SceneSession, text: str, reply_markup=None) -> None:
        # Errors from a step whose scene was cancelled meanwhile are not shown
        if not session.is_active:
            return
        try:
            await session.reply(text, reply_markup=reply_markup, parse_mode=None)
        except TelegramError as e:
            logger.error(f"❌ TELEGRAM_ERROR: could not report scene failure to chat {session.chat_id}: {e}")
