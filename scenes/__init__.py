"""
Scene Definitions - Multi-step Telegram Flows

Each scene file defines its ordered steps and the prompt/handle pair for
every step. Scenes are registered with the ``SceneEngine`` at startup.
"""

from .login import LoginScene
from .payee import PayeeAddScene
from .transfer import TransferScene
from .withdrawal import WithdrawalScene


def all_scenes():
    return [LoginScene(), TransferScene(), WithdrawalScene(), PayeeAddScene()]


__all__ = [
    'LoginScene',
    'PayeeAddScene',
    'TransferScene',
    'WithdrawalScene',
    'all_scenes',
]
