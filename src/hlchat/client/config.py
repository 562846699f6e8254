"""Configuration for the room client and its transports."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Connection and retry options for :class:`RoomSynchronizer` clients."""

    relay_base_url: str = Field(default="http://localhost:3000", alias="RELAY_BASE_URL")
    relay_ws_url: str | None = Field(default=None, alias="RELAY_WS_URL")
    relay_http_timeout_seconds: float = Field(default=10.0, alias="RELAY_HTTP_TIMEOUT_SECONDS")
    relay_reconnect_seconds: float = Field(default=2.0, alias="RELAY_RECONNECT_SECONDS")
    login_message_template: str = Field(
        default="HyperLiquidChat login {timestamp}", alias="LOGIN_MESSAGE_TEMPLATE"
    )

    mesh_node_url: str = Field(default="http://localhost:8645", alias="MESH_NODE_URL")
    mesh_cluster_id: int = Field(default=999, alias="MESH_CLUSTER_ID")
    mesh_shard_id: int = Field(default=42000, alias="MESH_SHARD_ID")
    mesh_peer_wait_seconds: float = Field(default=6.0, alias="MESH_PEER_WAIT_SECONDS")
    mesh_peer_poll_seconds: float = Field(default=0.5, alias="MESH_PEER_POLL_SECONDS")
    mesh_history_window_hours: int = Field(default=12, alias="MESH_HISTORY_WINDOW_HOURS")
    mesh_history_page_size: int = Field(default=100, alias="MESH_HISTORY_PAGE_SIZE")
    mesh_poll_interval_seconds: float = Field(default=1.0, alias="MESH_POLL_INTERVAL_SECONDS")
    mesh_verify_signatures: bool = Field(default=True, alias="MESH_VERIFY_SIGNATURES")
    mesh_http_timeout_seconds: float = Field(default=10.0, alias="MESH_HTTP_TIMEOUT_SECONDS")

    history_max_attempts: int = Field(default=3, alias="HISTORY_MAX_ATTEMPTS")
    history_backoff_seconds: float = Field(default=1.0, alias="HISTORY_BACKOFF_SECONDS")
    max_content_length: int = Field(default=500, alias="MAX_CONTENT_LENGTH")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def ws_base_url(self) -> str:
        """Websocket origin of the relay, derived from the HTTP URL if unset."""
        if self.relay_ws_url:
            return self.relay_ws_url.rstrip("/")
        base = self.relay_base_url.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base[len("https://"):]
        if base.startswith("http://"):
            return "ws://" + base[len("http://"):]
        return base

    @property
    def mesh_pubsub_topic(self) -> str:
        return f"/waku/2/rs/{self.mesh_cluster_id}/{self.mesh_shard_id}"
