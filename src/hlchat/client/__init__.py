"""Room client: synchronizer plus relay and mesh transports."""

from hlchat.client.config import ClientSettings
from hlchat.client.mesh import MeshTransport
from hlchat.client.models import ChatEntry, Message, MessageDraft
from hlchat.client.relay import RelayTransport
from hlchat.client.signing import LocalWalletSigner, WalletSigner
from hlchat.client.synchronizer import RoomState, RoomSynchronizer, SyncListener
from hlchat.client.transport import SubscriptionHandle, Transport

__all__ = [
    "ChatEntry",
    "ClientSettings",
    "LocalWalletSigner",
    "MeshTransport",
    "Message",
    "MessageDraft",
    "RelayTransport",
    "RoomState",
    "RoomSynchronizer",
    "SubscriptionHandle",
    "SyncListener",
    "Transport",
    "WalletSigner",
]
